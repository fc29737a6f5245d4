"""Per-item handlers for bulk operations, keyed by operation type.

A handler receives one ledger item and a HandlerContext, performs the work
for that target, and returns a JSON-serialisable result (stored on the item)
or raises. Exceptions are recorded as item failures by the executor.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from structlog import get_logger

from bulkflow.clients.outbound import (
    request_profile_enrichment,
    send_campaign_email,
    send_notification,
)
from bulkflow.core.database import db
from bulkflow.core.errors import (
    NotFoundError,
    OperationCancelledError,
    SchedulingError,
    ValidationError,
)
from bulkflow.models.operations import (
    EnrichProfilesParams,
    ExportDataParams,
    OperationParams,
    OperationStatus,
    OperationType,
    ScheduleInterviewParams,
    SendEmailCampaignParams,
    SendNotificationParams,
    StatusUpdateParams,
    TargetType,
)
from bulkflow.services import ledger
from bulkflow.services.scheduling import (
    NO_APPLICATION,
    get_application,
    get_employer_for_owner,
    get_job_applications,
    schedule_application,
)
from bulkflow.types.database import OperationItemRecordTD

logger = get_logger()


class CancellationToken:
    """
    Cancellation flag for one operation, backed by the ledger.

    is_cancelled() re-reads the operation status until it sees "cancelled";
    after that it answers from memory.
    """

    def __init__(
        self,
        operation_id: int,
        status_reader: Callable[[int], Awaitable[str | None]] | None = None,
    ) -> None:
        self.operation_id = operation_id
        self._status_reader = status_reader or ledger.get_operation_status
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def is_cancelled(self) -> bool:
        if not self._cancelled:
            status = await self._status_reader(self.operation_id)
            self._cancelled = status == OperationStatus.CANCELLED
        return self._cancelled

    async def raise_if_cancelled(self) -> None:
        if await self.is_cancelled():
            raise OperationCancelledError(
                f"Operation {self.operation_id} was cancelled",
                context={"operation_id": self.operation_id},
            )


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class HandlerContext:
    """Everything a handler may need besides the item itself."""

    operation_id: int
    owner_id: int
    operation_type: OperationType
    params: OperationParams
    token: CancellationToken
    clock: Callable[[], datetime] = field(default=_utcnow)


OperationHandler = Callable[
    [OperationItemRecordTD, HandlerContext], Awaitable[dict[str, Any] | None]
]

HANDLERS: dict[OperationType, OperationHandler] = {}


def register_handler(
    operation_type: OperationType,
) -> Callable[[OperationHandler], OperationHandler]:
    """Decorator registering a handler for an operation type."""

    def decorator(func: OperationHandler) -> OperationHandler:
        HANDLERS[operation_type] = func
        return func

    return decorator


def get_handler(operation_type: str) -> OperationHandler:
    """
    Raises:
        ValidationError: No handler registered for the type
    """
    try:
        return HANDLERS[OperationType(operation_type)]
    except (KeyError, ValueError) as e:
        raise ValidationError(
            f"Unknown operation type: {operation_type}",
            context={"operation_type": operation_type},
        ) from e


def _unsupported(item: OperationItemRecordTD, ctx: HandlerContext) -> ValidationError:
    return ValidationError(
        f"{ctx.operation_type.value} does not support {item['target_type']} targets",
        context={"target_type": item["target_type"], "operation_type": ctx.operation_type.value},
    )


async def _candidate_for_target(item: OperationItemRecordTD, ctx: HandlerContext) -> int:
    """Resolve the candidate behind a candidate/application/interview target."""
    target_type = item["target_type"]
    if target_type == TargetType.CANDIDATE:
        return item["target_id"]
    if target_type == TargetType.APPLICATION:
        query = "SELECT candidate_id FROM applications WHERE id = $1"
    elif target_type == TargetType.INTERVIEW:
        query = "SELECT candidate_id FROM interviews WHERE id = $1"
    else:
        raise _unsupported(item, ctx)

    candidate_id = await db.fetchval(query, item["target_id"])
    if candidate_id is None:
        raise NotFoundError(f"{target_type.capitalize()} {item['target_id']} not found")
    return candidate_id


# ============================================
# Handlers
# ============================================


@register_handler(OperationType.STATUS_UPDATE)
async def handle_status_update(
    item: OperationItemRecordTD, ctx: HandlerContext
) -> dict[str, Any]:
    params: StatusUpdateParams = ctx.params  # type: ignore[assignment]

    if item["target_type"] == TargetType.CANDIDATE:
        query = """
            UPDATE candidates SET profile_status = $2, updated_at = NOW()
            WHERE id = $1 RETURNING id
        """
    elif item["target_type"] == TargetType.APPLICATION:
        query = """
            UPDATE applications SET status = $2, updated_at = NOW()
            WHERE id = $1 RETURNING id
        """
    else:
        raise _unsupported(item, ctx)

    updated = await db.fetchval(query, item["target_id"], params.new_status)
    if updated is None:
        raise NotFoundError(f"{item['target_type'].capitalize()} {item['target_id']} not found")

    return {"new_status": params.new_status}


@register_handler(OperationType.SEND_NOTIFICATION)
async def handle_send_notification(
    item: OperationItemRecordTD, ctx: HandlerContext
) -> dict[str, Any]:
    params: SendNotificationParams = ctx.params  # type: ignore[assignment]
    candidate_id = await _candidate_for_target(item, ctx)

    await ctx.token.raise_if_cancelled()
    response = await send_notification(
        "candidate",
        candidate_id,
        params.channel,
        params.title,
        params.message,
        metadata={"operation_id": ctx.operation_id},
    )
    return {"candidate_id": candidate_id, "notification_id": response.get("id")}


@register_handler(OperationType.SEND_EMAIL_CAMPAIGN)
async def handle_send_email_campaign(
    item: OperationItemRecordTD, ctx: HandlerContext
) -> dict[str, Any]:
    params: SendEmailCampaignParams = ctx.params  # type: ignore[assignment]
    candidate_id = await _candidate_for_target(item, ctx)

    await ctx.token.raise_if_cancelled()
    response = await send_campaign_email(
        "candidate",
        candidate_id,
        params.subject,
        params.body,
        template_id=params.template_id,
        metadata={"operation_id": ctx.operation_id},
    )
    return {"candidate_id": candidate_id, "message_id": response.get("id")}


@register_handler(OperationType.ENRICH_PROFILES)
async def handle_enrich_profiles(
    item: OperationItemRecordTD, ctx: HandlerContext
) -> dict[str, Any]:
    params: EnrichProfilesParams = ctx.params  # type: ignore[assignment]
    candidate_id = await _candidate_for_target(item, ctx)

    await ctx.token.raise_if_cancelled()
    response = await request_profile_enrichment(
        candidate_id, params.sources, overwrite_existing=params.overwrite_existing
    )
    return {"candidate_id": candidate_id, "enrichment_id": response.get("id")}


@register_handler(OperationType.SCHEDULE_INTERVIEW)
async def handle_schedule_interview(
    item: OperationItemRecordTD, ctx: HandlerContext
) -> dict[str, Any]:
    params: ScheduleInterviewParams = ctx.params  # type: ignore[assignment]
    await get_employer_for_owner(params.employer_id, ctx.owner_id)

    if item["target_type"] == TargetType.APPLICATION:
        application = await get_application(item["target_id"])
        if application is None:
            raise NotFoundError(f"Application {item['target_id']} not found")
        if params.job_id is not None and application["job_id"] != params.job_id:
            raise ValidationError(
                f"Application {item['target_id']} is not for job {params.job_id}"
            )
    elif item["target_type"] == TargetType.CANDIDATE:
        applications = await get_job_applications([item["target_id"]], params.job_id)
        if not applications:
            raise SchedulingError(NO_APPLICATION, context={"candidate_id": item["target_id"]})
        application = applications[0]
    else:
        raise _unsupported(item, ctx)

    await ctx.token.raise_if_cancelled()
    outcome = await schedule_application(application, params.employer_id, params.rules, ctx.clock())
    if outcome.interview is None:
        raise SchedulingError(
            outcome.reason or "Scheduling failed",
            context={"candidate_id": outcome.candidate_id},
        )

    return {
        "interview_id": outcome.interview["id"],
        "candidate_id": outcome.candidate_id,
        "scheduled_at": outcome.interview["scheduled_at"].isoformat(),
    }


EXPORT_TABLES = {
    TargetType.CANDIDATE: "candidates",
    TargetType.APPLICATION: "applications",
    TargetType.INTERVIEW: "interviews",
    TargetType.JOB: "jobs",
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


@register_handler(OperationType.EXPORT_DATA)
async def handle_export_data(
    item: OperationItemRecordTD, ctx: HandlerContext
) -> dict[str, Any]:
    params: ExportDataParams = ctx.params  # type: ignore[assignment]
    table = EXPORT_TABLES[TargetType(item["target_type"])]

    row = await db.fetchrow(f"SELECT * FROM {table} WHERE id = $1", item["target_id"])
    if row is None:
        raise NotFoundError(f"{item['target_type'].capitalize()} {item['target_id']} not found")

    record = {key: _jsonable(value) for key, value in row.items()}
    if params.fields:
        missing = [f for f in params.fields if f not in record]
        if missing:
            raise ValidationError(f"Unknown export fields: {', '.join(missing)}")
        record = {f: record[f] for f in params.fields}

    if params.format == "csv":
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=list(record))
        writer.writeheader()
        writer.writerow(record)
        return {"format": "csv", "data": buffer.getvalue()}

    return {"format": "json", "data": record}
