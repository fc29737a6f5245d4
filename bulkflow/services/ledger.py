"""Job ledger: durable state for bulk operations and their items.

The ledger is the single source of truth for progress and cancellation.
Every status write is conditional on the current status so transitions stay
monotonic even when the API and the executor race.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import pydantic
from structlog import get_logger

from bulkflow.core.database import db
from bulkflow.core.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    service_boundary,
)
from bulkflow.models.operations import (
    PARAMS_MODELS,
    TERMINAL_STATUSES,
    OperationParams,
    OperationStatus,
    OperationType,
    TargetType,
)
from bulkflow.types.database import OperationItemRecordTD, OperationRecordTD

logger = get_logger()

OPERATION_JSON_FIELDS = ("target_criteria", "operation_params", "results_summary")
ITEM_DETAIL_LIMIT = 100


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _operation_from_row(row: Mapping[str, Any]) -> OperationRecordTD:
    record = dict(row.items())
    for field in OPERATION_JSON_FIELDS:
        if field in record:
            record[field] = _decode_json(record[field])
    return record  # type: ignore[return-value]


def _item_from_row(row: Mapping[str, Any]) -> OperationItemRecordTD:
    record = dict(row.items())
    if "result" in record:
        record["result"] = _decode_json(record["result"])
    return record  # type: ignore[return-value]


def parse_operation_params(operation_type: str, params: Mapping[str, Any]) -> OperationParams:
    """
    Validate raw parameters against the model registered for operation_type.

    Raises:
        ValidationError: Unknown operation type or invalid parameters
    """
    try:
        op_type = OperationType(operation_type)
    except ValueError as e:
        raise ValidationError(
            f"Unknown operation type: {operation_type}",
            context={"operation_type": operation_type},
        ) from e

    try:
        return PARAMS_MODELS[op_type].model_validate(dict(params))  # type: ignore[return-value]
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid parameters for {op_type.value}",
            context={
                "operation_type": op_type.value,
                "errors": [
                    {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()
                ],
            },
        ) from e


# ============================================
# Submission
# ============================================


@service_boundary
async def create_operation(
    owner_id: int,
    operation_type: str,
    target_ids: list[int],
    target_type: str,
    params: Mapping[str, Any],
) -> OperationRecordTD:
    """
    Persist an operation and one pending item per target in one transaction.

    Validation happens before anything is written.

    Returns:
        The created operation record (status pending, counts zero)

    Raises:
        ValidationError: Empty targets, unknown type/target type, bad params
    """
    if not target_ids:
        raise ValidationError("target_ids must not be empty")

    try:
        target = TargetType(target_type)
    except ValueError as e:
        raise ValidationError(
            f"Unknown target type: {target_type}", context={"target_type": target_type}
        ) from e

    typed_params = parse_operation_params(operation_type, params)

    if not db.pool:
        raise RuntimeError("Database pool not initialized")

    async with db.pool.acquire() as conn:
        async with conn.transaction():
            row = await conn.fetchrow(
                """
                INSERT INTO bulk_operations
                (owner_id, operation_type, status, target_count, target_criteria, operation_params)
                VALUES ($1, $2, 'pending', $3, $4::jsonb, $5::jsonb)
                RETURNING *
            """,
                owner_id,
                operation_type,
                len(target_ids),
                json.dumps({"target_ids": list(target_ids), "target_type": target.value}),
                typed_params.model_dump_json(),
            )

            # Item ids follow target order, which fixes the processing order
            await conn.executemany(
                """
                INSERT INTO bulk_operation_items (operation_id, target_id, target_type, status)
                VALUES ($1, $2, $3, 'pending')
            """,
                [(row["id"], target_id, target.value) for target_id in target_ids],
            )

    operation = _operation_from_row(row)
    logger.info(
        "operation_created",
        operation_id=operation["id"],
        owner_id=owner_id,
        operation_type=operation_type,
        target_count=len(target_ids),
    )
    return operation


# ============================================
# Reads
# ============================================


async def get_operation(operation_id: int) -> OperationRecordTD | None:
    row = await db.fetchrow("SELECT * FROM bulk_operations WHERE id = $1", operation_id)
    return _operation_from_row(row) if row else None


@service_boundary
async def get_operation_for_owner(operation_id: int, owner_id: int) -> OperationRecordTD:
    """
    Fetch an operation visible to owner_id.

    Raises:
        NotFoundError: Missing, or owned by someone else
    """
    row = await db.fetchrow(
        "SELECT * FROM bulk_operations WHERE id = $1 AND owner_id = $2",
        operation_id,
        owner_id,
    )
    if not row:
        raise NotFoundError(
            f"Operation {operation_id} not found", context={"operation_id": operation_id}
        )
    return _operation_from_row(row)


async def get_operation_status(operation_id: int) -> str | None:
    """Re-read the current status; used by the executor's cancellation poll."""
    return await db.fetchval("SELECT status FROM bulk_operations WHERE id = $1", operation_id)


@service_boundary
async def list_operations(
    owner_id: int,
    status: str | None = None,
    operation_type: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[OperationRecordTD]:
    rows = await db.fetch(
        """
        SELECT * FROM bulk_operations
        WHERE owner_id = $1
          AND ($2::text IS NULL OR status = $2)
          AND ($3::text IS NULL OR operation_type = $3)
        ORDER BY created_at DESC, id DESC
        LIMIT $4 OFFSET $5
    """,
        owner_id,
        status,
        operation_type,
        limit,
        offset,
    )
    return [_operation_from_row(row) for row in rows]


async def get_operation_items(
    operation_id: int, limit: int = ITEM_DETAIL_LIMIT
) -> list[OperationItemRecordTD]:
    rows = await db.fetch(
        """
        SELECT * FROM bulk_operation_items
        WHERE operation_id = $1
        ORDER BY id
        LIMIT $2
    """,
        operation_id,
        limit,
    )
    return [_item_from_row(row) for row in rows]


@service_boundary
async def get_operation_details(operation_id: int, owner_id: int) -> dict[str, Any]:
    """Operation plus its first 100 items, scoped to the owner."""
    operation = await get_operation_for_owner(operation_id, owner_id)
    items = await get_operation_items(operation_id)
    return {"operation": operation, "items": items}


async def get_pending_items(operation_id: int) -> list[OperationItemRecordTD]:
    rows = await db.fetch(
        """
        SELECT * FROM bulk_operation_items
        WHERE operation_id = $1 AND status = 'pending'
        ORDER BY id
    """,
        operation_id,
    )
    return [_item_from_row(row) for row in rows]


# ============================================
# Executor transitions
# ============================================


async def mark_operation_processing(operation_id: int, now: datetime) -> bool:
    """
    Move pending -> processing. A processing operation (resumed after a
    crash) keeps its original started_at.

    Returns:
        False if the operation is already terminal
    """
    row = await db.fetchrow(
        """
        UPDATE bulk_operations
        SET status = 'processing',
            started_at = COALESCE(started_at, $2),
            updated_at = $2
        WHERE id = $1 AND status IN ('pending', 'processing')
        RETURNING id
    """,
        operation_id,
        now,
    )
    return row is not None


async def mark_item_processing(item_id: int) -> bool:
    row = await db.fetchrow(
        """
        UPDATE bulk_operation_items
        SET status = 'processing'
        WHERE id = $1 AND status = 'pending'
        RETURNING id
    """,
        item_id,
    )
    return row is not None


async def mark_item_skipped(item_id: int) -> None:
    """Skip an in-flight item whose handler observed cancellation."""
    await db.execute(
        """
        UPDATE bulk_operation_items
        SET status = 'skipped'
        WHERE id = $1 AND status IN ('pending', 'processing')
    """,
        item_id,
    )


async def _finish_item(
    operation_id: int,
    item_id: int,
    succeeded: bool,
    now: datetime,
    result: dict[str, Any] | None = None,
    error: str | None = None,
) -> None:
    if not db.pool:
        raise RuntimeError("Database pool not initialized")

    async with db.pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(
                """
                UPDATE bulk_operation_items
                SET status = $2, processed_at = $3, result = $4::jsonb, error_message = $5
                WHERE id = $1
            """,
                item_id,
                "completed" if succeeded else "failed",
                now,
                json.dumps(result) if result is not None else None,
                error,
            )
            # Single statement keeps processed = success + failed under concurrency
            await conn.execute(
                """
                UPDATE bulk_operations
                SET processed_count = processed_count + 1,
                    success_count = success_count + $2,
                    failed_count = failed_count + $3,
                    updated_at = $4
                WHERE id = $1
            """,
                operation_id,
                1 if succeeded else 0,
                0 if succeeded else 1,
                now,
            )


async def record_item_success(
    operation_id: int, item_id: int, result: dict[str, Any] | None, now: datetime
) -> None:
    await _finish_item(operation_id, item_id, True, now, result=result)


async def record_item_failure(operation_id: int, item_id: int, error: str, now: datetime) -> None:
    await _finish_item(operation_id, item_id, False, now, error=error)


async def complete_operation(
    operation_id: int, processing_time: int, summary: dict[str, Any], now: datetime
) -> bool:
    """
    Move processing -> completed.

    Returns:
        False when the operation left processing meanwhile (e.g. cancelled)
    """
    row = await db.fetchrow(
        """
        UPDATE bulk_operations
        SET status = 'completed',
            completed_at = $2,
            processing_time = $3,
            results_summary = $4::jsonb,
            updated_at = $2
        WHERE id = $1 AND status = 'processing'
        RETURNING id
    """,
        operation_id,
        now,
        processing_time,
        json.dumps(summary),
    )
    return row is not None


async def fail_operation(operation_id: int, error: str, now: datetime) -> bool:
    row = await db.fetchrow(
        """
        UPDATE bulk_operations
        SET status = 'failed', completed_at = $2, error_summary = $3, updated_at = $2
        WHERE id = $1 AND status IN ('pending', 'processing')
        RETURNING id
    """,
        operation_id,
        now,
        error,
    )
    return row is not None


async def skip_pending_items(operation_id: int) -> int:
    """Mark every still-pending item skipped. Returns the number skipped."""
    rows = await db.fetch(
        """
        UPDATE bulk_operation_items
        SET status = 'skipped'
        WHERE operation_id = $1 AND status = 'pending'
        RETURNING id
    """,
        operation_id,
    )
    return len(rows)


# ============================================
# Cancellation
# ============================================


@service_boundary
async def cancel_operation(
    operation_id: int, owner_id: int, now: datetime | None = None
) -> OperationRecordTD:
    """
    Cancel a pending or processing operation.

    Pending items are skipped immediately; the executor notices the new
    status at its next item boundary.

    Raises:
        NotFoundError: Missing or not owned by caller
        InvalidStateError: Operation already completed, failed or cancelled
    """
    now = now or datetime.now(UTC)
    operation = await get_operation_for_owner(operation_id, owner_id)

    if operation["status"] in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Operation {operation_id} cannot be cancelled",
            context={"operation_id": operation_id, "status": operation["status"]},
        )

    row = await db.fetchrow(
        """
        UPDATE bulk_operations
        SET status = 'cancelled', cancelled_at = $2, cancelled_by = $3, updated_at = $2
        WHERE id = $1 AND status IN ('pending', 'processing')
        RETURNING *
    """,
        operation_id,
        now,
        owner_id,
    )
    if not row:
        # Reached a terminal state between the read and the update
        raise InvalidStateError(
            f"Operation {operation_id} cannot be cancelled",
            context={"operation_id": operation_id},
        )

    skipped = await skip_pending_items(operation_id)
    logger.info("operation_cancelled", operation_id=operation_id, skipped_items=skipped)
    return _operation_from_row(row)


# ============================================
# Recovery
# ============================================


async def find_stalled_operations(older_than: datetime) -> list[int]:
    rows = await db.fetch(
        """
        SELECT id FROM bulk_operations
        WHERE status IN ('pending', 'processing') AND updated_at < $1
        ORDER BY id
    """,
        older_than,
    )
    return [row["id"] for row in rows]


async def fail_interrupted_items(operation_id: int, now: datetime) -> int:
    """Fail items a crashed executor left in processing."""
    rows = await db.fetch(
        """
        UPDATE bulk_operation_items
        SET status = 'failed', processed_at = $2, error_message = 'Interrupted before completion'
        WHERE operation_id = $1 AND status = 'processing'
        RETURNING id
    """,
        operation_id,
        now,
    )
    return len(rows)


async def recount_operation(operation_id: int, now: datetime) -> None:
    """Recompute counters from item rows after recovery."""
    await db.execute(
        """
        UPDATE bulk_operations o
        SET success_count = c.success,
            failed_count = c.failed,
            processed_count = c.success + c.failed,
            updated_at = $2
        FROM (
            SELECT
                COUNT(*) FILTER (WHERE status = 'completed') AS success,
                COUNT(*) FILTER (WHERE status = 'failed') AS failed
            FROM bulk_operation_items
            WHERE operation_id = $1
        ) c
        WHERE o.id = $1
    """,
        operation_id,
        now,
    )


# ============================================
# Statistics
# ============================================


def percentage(part: int, whole: int) -> int:
    """Rounded (half up) percentage clamped to [0, 100]; 0 when whole is 0."""
    if whole <= 0:
        return 0
    value = math.floor(part / whole * 100 + 0.5)
    return max(0, min(100, value))


def compute_operation_stats(operations: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    """Aggregate counts and rates over operation rows."""
    rows = list(operations)
    total = len(rows)
    by_status = {status.value: 0 for status in OperationStatus}
    for row in rows:
        by_status[row["status"]] = by_status.get(row["status"], 0) + 1

    items_processed = sum(row["processed_count"] or 0 for row in rows)
    items_success = sum(row["success_count"] or 0 for row in rows)
    items_failed = sum(row["failed_count"] or 0 for row in rows)

    processing_times = [row["processing_time"] for row in rows if row["processing_time"]]
    average_time = (
        math.floor(sum(processing_times) / len(processing_times) + 0.5) if processing_times else 0
    )

    return {
        "total_operations": total,
        "completed_operations": by_status[OperationStatus.COMPLETED],
        "failed_operations": by_status[OperationStatus.FAILED],
        "cancelled_operations": by_status[OperationStatus.CANCELLED],
        "success_rate": percentage(by_status[OperationStatus.COMPLETED], total),
        "total_items_processed": items_processed,
        "total_items_success": items_success,
        "total_items_failed": items_failed,
        "item_success_rate": percentage(items_success, items_processed),
        "average_processing_time": average_time,
    }


@service_boundary
async def get_operation_stats(
    owner_id: int, period_start: datetime, period_end: datetime
) -> dict[str, int]:
    """
    Statistics over the owner's operations created within the period.

    Raises:
        ValidationError: period_start after period_end
    """
    if period_start > period_end:
        raise ValidationError("period_start must not be after period_end")

    rows = await db.fetch(
        """
        SELECT status, processed_count, success_count, failed_count, processing_time
        FROM bulk_operations
        WHERE owner_id = $1 AND created_at >= $2 AND created_at <= $3
    """,
        owner_id,
        period_start,
        period_end,
    )
    stats = compute_operation_stats(rows)
    logger.info("operation_stats_retrieved", owner_id=owner_id, **stats)
    return stats
