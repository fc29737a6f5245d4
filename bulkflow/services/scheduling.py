"""Bulk interview scheduling.

Greedy earliest-slot assignment: candidates are handled in the order given,
and each one gets the first slot that is free for both the candidate and the
employer once the run's rules are applied.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

from structlog import get_logger

from bulkflow.core.config import settings
from bulkflow.core.database import db
from bulkflow.core.errors import NotFoundError, describe_error, service_boundary
from bulkflow.models.scheduling import SchedulingRules, parse_clock_time
from bulkflow.services.conflicts import (
    check_interview_conflicts,
    create_conflict,
    suggest_resolutions,
)
from bulkflow.services.slots import ensure_utc, find_available_time_slots
from bulkflow.types.database import (
    ApplicationRecordTD,
    ConflictRecordTD,
    InterviewRecordTD,
    SchedulingRunRecordTD,
)

logger = get_logger()

NO_APPLICATION = "No application found"
NO_SLOTS = "No available time slots found"
ALL_SLOTS_CONFLICT = "All available slots have conflicts"
DAILY_LIMIT_REACHED = "Daily interview limit reached"

RUN_COLUMNS = (
    "id, employer_id, job_id, name, total_candidates, scheduled_count, conflict_count, "
    "failed_count, status, rules, created_at, completed_at"
)
INTERVIEW_COLUMNS = (
    "id, application_id, employer_id, candidate_id, job_id, scheduled_at, duration, "
    "status, interview_type"
)


@dataclass
class ScheduleOutcome:
    """Result of trying to book one candidate."""

    candidate_id: int
    interview: InterviewRecordTD | None = None
    reason: str | None = None
    conflict: ConflictRecordTD | None = None

    @property
    def scheduled(self) -> bool:
        return self.interview is not None


def _run_from_row(row: Mapping[str, Any]) -> SchedulingRunRecordTD:
    record = dict(row.items())
    if isinstance(record.get("rules"), str):
        record["rules"] = json.loads(record["rules"])
    return record  # type: ignore[return-value]


# ============================================
# Data access
# ============================================


async def get_employer_for_owner(employer_id: int, owner_id: int) -> dict[str, Any]:
    """
    Raises:
        NotFoundError: Employer missing or not owned by the caller
    """
    row = await db.fetchrow(
        "SELECT id, user_id, company_name FROM employers WHERE id = $1 AND user_id = $2",
        employer_id,
        owner_id,
    )
    if not row:
        raise NotFoundError(
            f"Employer {employer_id} not found", context={"employer_id": employer_id}
        )
    return dict(row.items())


async def get_job_applications(
    candidate_ids: list[int], job_id: int | None
) -> list[ApplicationRecordTD]:
    """
    One application per candidate, in candidate_ids order.

    With job_id None the candidate's most recent application is used.
    """
    rows = await db.fetch(
        """
        SELECT DISTINCT ON (candidate_id) id, candidate_id, job_id
        FROM applications
        WHERE candidate_id = ANY($1::bigint[])
          AND ($2::bigint IS NULL OR job_id = $2)
        ORDER BY candidate_id, created_at DESC, id DESC
    """,
        candidate_ids,
        job_id,
    )
    by_candidate = {row["candidate_id"]: dict(row.items()) for row in rows}
    return [by_candidate[cid] for cid in candidate_ids if cid in by_candidate]  # type: ignore[misc]


async def get_application(application_id: int) -> ApplicationRecordTD | None:
    row = await db.fetchrow(
        "SELECT id, candidate_id, job_id FROM applications WHERE id = $1", application_id
    )
    return dict(row.items()) if row else None  # type: ignore[return-value]


async def get_employer_daily_counts(
    employer_id: int, start: datetime, end: datetime
) -> Counter[date]:
    """Scheduled interviews per UTC day for the employer within [start, end]."""
    rows = await db.fetch(
        """
        SELECT (scheduled_at AT TIME ZONE 'UTC')::date AS day, COUNT(*) AS count
        FROM interviews
        WHERE employer_id = $1 AND status = 'scheduled'
          AND scheduled_at >= $2 AND scheduled_at <= $3
        GROUP BY day
    """,
        employer_id,
        start,
        end,
    )
    return Counter({row["day"]: row["count"] for row in rows})


async def insert_interview(
    application: Mapping[str, Any],
    employer_id: int,
    scheduled_at: datetime,
    rules: SchedulingRules,
    run_id: int | None = None,
) -> InterviewRecordTD:
    row = await db.fetchrow(
        f"""
        INSERT INTO interviews
        (application_id, employer_id, candidate_id, job_id, scheduled_at,
         duration, interview_type, status, scheduling_run_id)
        VALUES ($1, $2, $3, $4, $5, $6, $7, 'scheduled', $8)
        RETURNING {INTERVIEW_COLUMNS}
    """,
        application["id"],
        employer_id,
        application["candidate_id"],
        application["job_id"],
        scheduled_at,
        rules.duration,
        rules.interview_type,
        run_id,
    )
    return dict(row.items())  # type: ignore[return-value]


async def update_scheduling_run(run_id: int, **fields: Any) -> SchedulingRunRecordTD:
    """Set the given columns on a run and return the updated row."""
    columns = list(fields)
    assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(columns, start=2))
    row = await db.fetchrow(
        f"UPDATE scheduling_runs SET {assignments} WHERE id = $1 RETURNING {RUN_COLUMNS}",
        run_id,
        *fields.values(),
    )
    return _run_from_row(row)


# ============================================
# Scheduling
# ============================================


async def schedule_application(
    application: Mapping[str, Any],
    employer_id: int,
    rules: SchedulingRules,
    now: datetime,
    day_counts: Counter[date] | None = None,
    run_id: int | None = None,
) -> ScheduleOutcome:
    """
    Book the earliest slot that is free for the candidate and the employer.

    Soft failures come back as an outcome with a reason, never as exceptions.
    When every slot conflicts with the employer calendar a conflict record is
    stored with ranked alternatives from the days after the horizon.
    """
    candidate_id = application["candidate_id"]
    start = ensure_utc(now)
    end = start + timedelta(days=settings.scheduling_horizon_days)
    buffer = timedelta(minutes=rules.buffer_minutes)

    preferred_windows = (
        [(parse_clock_time(w.start), parse_clock_time(w.end)) for w in rules.preferred_time_slots]
        if rules.preferred_time_slots
        else None
    )

    slots = await find_available_time_slots(
        candidate_id,
        employer_id,
        rules.duration,
        start,
        end,
        preferred_days=rules.preferred_days,
        preferred_windows=preferred_windows,
    )
    if not slots:
        return ScheduleOutcome(candidate_id, reason=NO_SLOTS)

    if rules.max_per_day is not None and day_counts is None:
        day_counts = await get_employer_daily_counts(employer_id, start, end)

    first_conflict: tuple[datetime, list[InterviewRecordTD]] | None = None
    for slot in slots:
        if rules.max_per_day is not None and day_counts is not None:
            if day_counts[slot.date()] >= rules.max_per_day:
                continue

        conflicts = await check_interview_conflicts(
            employer_id, slot - buffer, rules.duration + 2 * rules.buffer_minutes
        )
        if conflicts:
            if first_conflict is None:
                first_conflict = (slot, conflicts)
            continue

        interview = await insert_interview(application, employer_id, slot, rules, run_id)
        if day_counts is not None:
            day_counts[slot.date()] += 1
        logger.info(
            "interview_scheduled",
            candidate_id=candidate_id,
            employer_id=employer_id,
            interview_id=interview["id"],
            scheduled_at=slot.isoformat(),
        )
        return ScheduleOutcome(candidate_id, interview=interview)

    if first_conflict is None:
        return ScheduleOutcome(candidate_id, reason=DAILY_LIMIT_REACHED)

    conflict_slot, conflicting = first_conflict
    conflict = await create_conflict(
        employer_id,
        conflict_slot,
        description=(
            f"Candidate {candidate_id}: all {len(slots)} available slots overlap "
            f"existing interviews"
        ),
        conflicting_interview_ids=[interview["id"] for interview in conflicting],
    )
    await suggest_resolutions(
        conflict["id"],
        candidate_id,
        employer_id,
        rules.duration,
        end,
        end + timedelta(days=settings.resolution_lookahead_days),
        limit=settings.max_resolution_suggestions,
    )
    return ScheduleOutcome(candidate_id, reason=ALL_SLOTS_CONFLICT, conflict=conflict)


async def bulk_schedule_interviews(
    run_id: int,
    employer_id: int,
    candidate_ids: list[int],
    job_id: int | None,
    rules: SchedulingRules,
    now: datetime | None = None,
) -> dict[str, list[Any]]:
    """
    Assign interviews across candidates and finalise the run's counts.

    Returns:
        {"scheduled": [...interviews], "conflicts": [...], "failed": [{candidate_id, reason}]}
    """
    now = ensure_utc(now or datetime.now(UTC))
    scheduled: list[InterviewRecordTD] = []
    conflicts: list[ConflictRecordTD] = []
    failed: list[dict[str, Any]] = []

    applications = await get_job_applications(candidate_ids, job_id)
    with_application = {app["candidate_id"] for app in applications}
    for candidate_id in candidate_ids:
        if candidate_id not in with_application:
            failed.append({"candidate_id": candidate_id, "reason": NO_APPLICATION})

    day_counts: Counter[date] | None = None
    if rules.max_per_day is not None:
        day_counts = await get_employer_daily_counts(
            employer_id, now, now + timedelta(days=settings.scheduling_horizon_days)
        )

    for application in applications:
        candidate_id = application["candidate_id"]
        try:
            outcome = await schedule_application(
                application, employer_id, rules, now, day_counts=day_counts, run_id=run_id
            )
        except Exception as e:
            logger.exception("candidate_scheduling_error", run_id=run_id, candidate_id=candidate_id)
            failed.append({"candidate_id": candidate_id, "reason": describe_error(e)})
            continue

        if outcome.interview is not None:
            scheduled.append(outcome.interview)
            continue
        failed.append({"candidate_id": candidate_id, "reason": outcome.reason})
        if outcome.conflict is not None:
            conflicts.append(outcome.conflict)

    await update_scheduling_run(
        run_id,
        scheduled_count=len(scheduled),
        conflict_count=len(conflicts),
        failed_count=len(failed),
        status="completed",
        completed_at=now,
    )

    logger.info(
        "bulk_scheduling_completed",
        run_id=run_id,
        scheduled=len(scheduled),
        conflicts=len(conflicts),
        failed=len(failed),
    )
    return {"scheduled": scheduled, "conflicts": conflicts, "failed": failed}


@service_boundary
async def create_scheduling_run(
    owner_id: int,
    employer_id: int,
    job_id: int | None,
    name: str,
    candidate_ids: list[int],
    rules: SchedulingRules,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Create a run and execute it synchronously.

    Returns:
        {"run": run_record, "result": {"scheduled", "conflicts", "failed"}}

    Raises:
        NotFoundError: Employer missing or not owned by the caller
    """
    now = ensure_utc(now or datetime.now(UTC))
    await get_employer_for_owner(employer_id, owner_id)

    row = await db.fetchrow(
        f"""
        INSERT INTO scheduling_runs (employer_id, job_id, name, total_candidates, status, rules)
        VALUES ($1, $2, $3, $4, 'processing', $5::jsonb)
        RETURNING {RUN_COLUMNS}
    """,
        employer_id,
        job_id,
        name,
        len(candidate_ids),
        rules.model_dump_json(),
    )
    run_id = row["id"]
    logger.info(
        "scheduling_run_started",
        run_id=run_id,
        employer_id=employer_id,
        job_id=job_id,
        total_candidates=len(candidate_ids),
    )

    try:
        result = await bulk_schedule_interviews(
            run_id, employer_id, candidate_ids, job_id, rules, now=now
        )
    except Exception:
        logger.exception("scheduling_run_failed", run_id=run_id)
        await update_scheduling_run(run_id, status="failed", completed_at=now)
        raise

    run = await get_scheduling_run(run_id, owner_id)
    return {"run": run, "result": result}


@service_boundary
async def get_scheduling_run(run_id: int, owner_id: int) -> SchedulingRunRecordTD:
    """
    Raises:
        NotFoundError: Run missing or its employer not owned by the caller
    """
    row = await db.fetchrow(
        f"""
        SELECT {", ".join(f"r.{c.strip()}" for c in RUN_COLUMNS.split(","))}
        FROM scheduling_runs r
        JOIN employers e ON e.id = r.employer_id
        WHERE r.id = $1 AND e.user_id = $2
    """,
        run_id,
        owner_id,
    )
    if not row:
        raise NotFoundError(f"Scheduling run {run_id} not found", context={"run_id": run_id})
    return _run_from_row(row)
