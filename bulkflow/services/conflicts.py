"""Employer conflict detection and the conflict resolution advisor.

The advisor only records and ranks suggestions. Applying a resolution marks
it applied; moving the interview is left to the caller.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from structlog import get_logger

from bulkflow.core.database import db
from bulkflow.core.errors import NotFoundError, service_boundary
from bulkflow.services.slots import ensure_utc, find_available_time_slots
from bulkflow.types.database import ConflictRecordTD, InterviewRecordTD, ResolutionRecordTD

logger = get_logger()

CONFLICT_COLUMNS = (
    "id, employer_id, conflict_date, conflicting_interview_ids, conflict_type, "
    "description, resolved, resolved_at, created_at"
)
RESOLUTION_COLUMNS = "id, conflict_id, suggested_time, reason, priority, applied"


def _conflict_from_row(row: Mapping[str, Any]) -> ConflictRecordTD:
    record = dict(row.items())
    ids = record.get("conflicting_interview_ids")
    if isinstance(ids, str):
        record["conflicting_interview_ids"] = json.loads(ids)
    return record  # type: ignore[return-value]


# ============================================
# Conflict detection
# ============================================


async def check_interview_conflicts(
    employer_id: int, scheduled_at: datetime, duration: int
) -> list[InterviewRecordTD]:
    """
    Scheduled interviews of the employer overlapping [scheduled_at, +duration).

    Back-to-back intervals sharing an endpoint are not conflicts.
    """
    start = ensure_utc(scheduled_at)
    end = start + timedelta(minutes=duration)
    rows = await db.fetch(
        """
        SELECT id, application_id, employer_id, candidate_id, job_id,
               scheduled_at, duration, status, interview_type
        FROM interviews
        WHERE employer_id = $1
          AND status = 'scheduled'
          AND scheduled_at < $3
          AND scheduled_at + make_interval(mins => duration) > $2
        ORDER BY scheduled_at
    """,
        employer_id,
        start,
        end,
    )
    return [dict(row.items()) for row in rows]  # type: ignore[misc]


# ============================================
# Conflicts
# ============================================


@service_boundary
async def create_conflict(
    employer_id: int,
    conflict_date: datetime,
    description: str | None = None,
    conflicting_interview_ids: list[int] | None = None,
    conflict_type: str = "overlapping",
) -> ConflictRecordTD:
    row = await db.fetchrow(
        f"""
        INSERT INTO interview_conflicts
        (employer_id, conflict_date, conflicting_interview_ids, conflict_type, description)
        VALUES ($1, $2, $3::jsonb, $4, $5)
        RETURNING {CONFLICT_COLUMNS}
    """,
        employer_id,
        ensure_utc(conflict_date),
        json.dumps(conflicting_interview_ids or []),
        conflict_type,
        description,
    )
    logger.info("interview_conflict_recorded", conflict_id=row["id"], employer_id=employer_id)
    return _conflict_from_row(row)


async def get_conflict(conflict_id: int) -> ConflictRecordTD | None:
    row = await db.fetchrow(
        f"SELECT {CONFLICT_COLUMNS} FROM interview_conflicts WHERE id = $1", conflict_id
    )
    return _conflict_from_row(row) if row else None


@service_boundary
async def get_unresolved_conflicts(employer_id: int) -> list[ConflictRecordTD]:
    rows = await db.fetch(
        f"""
        SELECT {CONFLICT_COLUMNS} FROM interview_conflicts
        WHERE employer_id = $1 AND resolved = false
        ORDER BY conflict_date, id
    """,
        employer_id,
    )
    return [_conflict_from_row(row) for row in rows]


@service_boundary
async def resolve_conflict(conflict_id: int, now: datetime | None = None) -> ConflictRecordTD:
    """
    Mark a conflict resolved, whether or not a resolution was applied.

    Raises:
        NotFoundError: Conflict does not exist
    """
    row = await db.fetchrow(
        f"""
        UPDATE interview_conflicts
        SET resolved = true, resolved_at = $2
        WHERE id = $1
        RETURNING {CONFLICT_COLUMNS}
    """,
        conflict_id,
        now or datetime.now(UTC),
    )
    if not row:
        raise NotFoundError(
            f"Conflict {conflict_id} not found", context={"conflict_id": conflict_id}
        )
    logger.info("interview_conflict_resolved", conflict_id=conflict_id)
    return _conflict_from_row(row)


# ============================================
# Resolutions
# ============================================


@service_boundary
async def create_resolution(
    conflict_id: int,
    suggested_time: datetime,
    reason: str | None = None,
    priority: int = 0,
) -> ResolutionRecordTD:
    """
    Store an alternative time for a conflict. Lower priority = preferred.

    Raises:
        NotFoundError: Conflict does not exist
    """
    if await get_conflict(conflict_id) is None:
        raise NotFoundError(
            f"Conflict {conflict_id} not found", context={"conflict_id": conflict_id}
        )

    row = await db.fetchrow(
        f"""
        INSERT INTO conflict_resolutions (conflict_id, suggested_time, reason, priority)
        VALUES ($1, $2, $3, $4)
        RETURNING {RESOLUTION_COLUMNS}
    """,
        conflict_id,
        ensure_utc(suggested_time),
        reason,
        priority,
    )
    return dict(row.items())  # type: ignore[return-value]


@service_boundary
async def get_resolutions(conflict_id: int) -> list[ResolutionRecordTD]:
    """Resolutions for a conflict, most preferred first."""
    rows = await db.fetch(
        f"""
        SELECT {RESOLUTION_COLUMNS} FROM conflict_resolutions
        WHERE conflict_id = $1
        ORDER BY priority, id
    """,
        conflict_id,
    )
    return [dict(row.items()) for row in rows]  # type: ignore[misc]


@service_boundary
async def apply_resolution(resolution_id: int) -> ResolutionRecordTD:
    """
    Mark a resolution applied. The interview itself is not moved.

    Raises:
        NotFoundError: Resolution does not exist
    """
    row = await db.fetchrow(
        f"""
        UPDATE conflict_resolutions SET applied = true
        WHERE id = $1
        RETURNING {RESOLUTION_COLUMNS}
    """,
        resolution_id,
    )
    if not row:
        raise NotFoundError(
            f"Resolution {resolution_id} not found", context={"resolution_id": resolution_id}
        )
    logger.info(
        "conflict_resolution_applied", resolution_id=resolution_id, conflict_id=row["conflict_id"]
    )
    return dict(row.items())  # type: ignore[return-value]


async def suggest_resolutions(
    conflict_id: int,
    candidate_id: int,
    employer_id: int,
    duration: int,
    start: datetime,
    end: datetime,
    limit: int = 3,
) -> list[ResolutionRecordTD]:
    """
    Rank the candidate's earliest employer-free slots in [start, end] as
    resolutions for a conflict (priority 1 = earliest).
    """
    slots = await find_available_time_slots(candidate_id, employer_id, duration, start, end)

    resolutions: list[ResolutionRecordTD] = []
    for slot in slots:
        if len(resolutions) >= limit:
            break
        if await check_interview_conflicts(employer_id, slot, duration):
            continue
        resolutions.append(
            await create_resolution(
                conflict_id,
                slot,
                reason=f"Earliest free slot for candidate {candidate_id}",
                priority=len(resolutions) + 1,
            )
        )

    logger.info(
        "conflict_resolutions_suggested",
        conflict_id=conflict_id,
        candidate_id=candidate_id,
        count=len(resolutions),
    )
    return resolutions


async def get_resolution(resolution_id: int) -> ResolutionRecordTD | None:
    row = await db.fetchrow(
        f"SELECT {RESOLUTION_COLUMNS} FROM conflict_resolutions WHERE id = $1", resolution_id
    )
    return dict(row.items()) if row else None  # type: ignore[return-value]
