"""Bulk operation endpoints: submit, inspect, cancel, statistics."""

from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from structlog import get_logger

from bulkflow.api.deps import get_current_owner
from bulkflow.core.config import settings
from bulkflow.middleware.rate_limit import limiter
from bulkflow.models.operations import (
    OperationCancelResponse,
    OperationCreate,
    OperationCreateResponse,
    OperationDetailsResponse,
    OperationResponse,
    OperationsListResponse,
    OperationStatsResponse,
    OperationStatus,
    OperationType,
)
from bulkflow.services import ledger
from bulkflow.services.executor import submit_operation
from bulkflow.services.slots import ensure_utc

logger = get_logger()
router = APIRouter(prefix="/operations", tags=["operations"])

Owner = Annotated[int, Depends(get_current_owner)]

DEFAULT_STATS_PERIOD = timedelta(days=30)


@router.post(
    "",
    response_model=OperationCreateResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit(settings.operation_rate_limit)
async def create_operation(
    request: Request, body: OperationCreate, owner_id: Owner
) -> OperationCreateResponse:
    """
    Submit a bulk operation.

    Returns as soon as the operation is recorded; processing continues in
    the background. Poll GET /operations/{id} for progress.
    """
    operation = await submit_operation(
        owner_id,
        body.operation_type.value,
        body.target_ids,
        body.target_type.value,
        body.operation_params,
    )
    return OperationCreateResponse(
        success=True, operation_id=operation["id"], target_count=operation["target_count"]
    )


@router.get("", response_model=OperationsListResponse)
async def list_operations(
    owner_id: Owner,
    status_filter: Annotated[OperationStatus | None, Query(alias="status")] = None,
    operation_type: OperationType | None = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> OperationsListResponse:
    """List the caller's operations, newest first."""
    operations = await ledger.list_operations(
        owner_id,
        status=status_filter.value if status_filter else None,
        operation_type=operation_type.value if operation_type else None,
        limit=limit,
        offset=offset,
    )
    return OperationsListResponse(
        count=len(operations),
        operations=[OperationResponse(**op) for op in operations],
    )


@router.get("/stats", response_model=OperationStatsResponse)
async def operation_stats(
    owner_id: Owner,
    period_start: datetime | None = None,
    period_end: datetime | None = None,
) -> OperationStatsResponse:
    """
    Aggregate statistics over operations created in [period_start, period_end].

    Defaults to the last 30 days.
    """
    end = ensure_utc(period_end) if period_end else datetime.now(UTC)
    start = ensure_utc(period_start) if period_start else end - DEFAULT_STATS_PERIOD
    stats = await ledger.get_operation_stats(owner_id, start, end)
    return OperationStatsResponse(**stats)


@router.get("/{operation_id}", response_model=OperationDetailsResponse)
async def get_operation(operation_id: int, owner_id: Owner) -> OperationDetailsResponse:
    """Operation record plus up to 100 of its items."""
    details = await ledger.get_operation_details(operation_id, owner_id)
    return OperationDetailsResponse(**details)


@router.post("/{operation_id}/cancel", response_model=OperationCancelResponse)
async def cancel_operation(operation_id: int, owner_id: Owner) -> OperationCancelResponse:
    """
    Cancel a pending or processing operation.

    Items not yet started are skipped; an item already running finishes.
    """
    logger.info("operation_cancel_requested", operation_id=operation_id, owner_id=owner_id)
    await ledger.cancel_operation(operation_id, owner_id)
    return OperationCancelResponse(success=True, operation_id=operation_id)
