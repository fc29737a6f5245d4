"""Candidate availability index: recurring weekly windows."""

from __future__ import annotations

from typing import Any

from structlog import get_logger

from bulkflow.core.database import db
from bulkflow.core.errors import NotFoundError, ValidationError, service_boundary
from bulkflow.models.scheduling import parse_clock_time
from bulkflow.types.database import AvailabilityRecordTD

logger = get_logger()

AVAILABILITY_COLUMNS = "id, candidate_id, day_of_week, start_time, end_time, timezone, is_active"


def windows_overlap(a_start: str, a_end: str, b_start: str, b_end: str) -> bool:
    """Two HH:MM windows on the same day share any time (touching is fine)."""
    return parse_clock_time(a_start) < parse_clock_time(b_end) and parse_clock_time(
        b_start
    ) < parse_clock_time(a_end)


async def get_candidate_availability(
    candidate_id: int, active_only: bool = True
) -> list[AvailabilityRecordTD]:
    """
    Fetch a candidate's weekly windows ordered by weekday position and start.

    Args:
        candidate_id: Candidate ID
        active_only: Skip windows with is_active = false
    """
    rows = await db.fetch(
        f"""
        SELECT {AVAILABILITY_COLUMNS}
        FROM candidate_availability
        WHERE candidate_id = $1 AND ($2::boolean IS FALSE OR is_active)
        ORDER BY array_position(
            ARRAY['monday','tuesday','wednesday','thursday','friday','saturday','sunday'],
            day_of_week
        ), start_time
    """,
        candidate_id,
        active_only,
    )
    return [dict(row.items()) for row in rows]  # type: ignore[misc]


async def _ensure_disjoint(
    candidate_id: int,
    day_of_week: str,
    start_time: str,
    end_time: str,
    exclude_id: int | None = None,
) -> None:
    existing = await get_candidate_availability(candidate_id)
    for window in existing:
        if window["day_of_week"] != day_of_week or window["id"] == exclude_id:
            continue
        if windows_overlap(start_time, end_time, window["start_time"], window["end_time"]):
            raise ValidationError(
                "Availability window overlaps an existing window",
                context={
                    "candidate_id": candidate_id,
                    "day_of_week": day_of_week,
                    "existing_id": window["id"],
                },
            )


@service_boundary
async def set_candidate_availability(
    candidate_id: int,
    day_of_week: str,
    start_time: str,
    end_time: str,
    timezone: str = "UTC",
    is_active: bool = True,
) -> AvailabilityRecordTD:
    """
    Add a weekly window for a candidate.

    Raises:
        NotFoundError: Candidate does not exist
        ValidationError: Window overlaps another active window that day
    """
    exists = await db.fetchval("SELECT 1 FROM candidates WHERE id = $1", candidate_id)
    if not exists:
        raise NotFoundError(
            f"Candidate {candidate_id} not found", context={"candidate_id": candidate_id}
        )

    if is_active:
        await _ensure_disjoint(candidate_id, day_of_week, start_time, end_time)

    row = await db.fetchrow(
        f"""
        INSERT INTO candidate_availability
        (candidate_id, day_of_week, start_time, end_time, timezone, is_active)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {AVAILABILITY_COLUMNS}
    """,
        candidate_id,
        day_of_week,
        start_time,
        end_time,
        timezone,
        is_active,
    )

    logger.info(
        "availability_created",
        candidate_id=candidate_id,
        availability_id=row["id"],
        day_of_week=day_of_week,
    )
    return dict(row.items())  # type: ignore[return-value]


@service_boundary
async def update_candidate_availability(
    availability_id: int, changes: dict[str, Any]
) -> AvailabilityRecordTD:
    """
    Apply a partial update to a window, re-validating order and overlap.

    Raises:
        NotFoundError: Window does not exist
        ValidationError: Resulting window is empty or overlaps another
    """
    current = await db.fetchrow(
        f"SELECT {AVAILABILITY_COLUMNS} FROM candidate_availability WHERE id = $1",
        availability_id,
    )
    if not current:
        raise NotFoundError(
            f"Availability {availability_id} not found",
            context={"availability_id": availability_id},
        )

    merged = dict(current.items())
    merged.update({k: v for k, v in changes.items() if v is not None})

    if parse_clock_time(merged["start_time"]) >= parse_clock_time(merged["end_time"]):
        raise ValidationError("start_time must be before end_time")

    if merged["is_active"]:
        await _ensure_disjoint(
            merged["candidate_id"],
            merged["day_of_week"],
            merged["start_time"],
            merged["end_time"],
            exclude_id=availability_id,
        )

    row = await db.fetchrow(
        f"""
        UPDATE candidate_availability
        SET day_of_week = $2, start_time = $3, end_time = $4, timezone = $5,
            is_active = $6, updated_at = NOW()
        WHERE id = $1
        RETURNING {AVAILABILITY_COLUMNS}
    """,
        availability_id,
        merged["day_of_week"],
        merged["start_time"],
        merged["end_time"],
        merged["timezone"],
        merged["is_active"],
    )

    logger.info("availability_updated", availability_id=availability_id)
    return dict(row.items())  # type: ignore[return-value]


@service_boundary
async def delete_candidate_availability(availability_id: int) -> None:
    """
    Remove a window.

    Raises:
        NotFoundError: Window does not exist
    """
    deleted = await db.fetchval(
        "DELETE FROM candidate_availability WHERE id = $1 RETURNING id", availability_id
    )
    if deleted is None:
        raise NotFoundError(
            f"Availability {availability_id} not found",
            context={"availability_id": availability_id},
        )
    logger.info("availability_deleted", availability_id=availability_id)
