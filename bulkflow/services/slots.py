"""Slot generation from weekly availability windows.

Slots start on the hour relative to each window's start (09:30 window ->
09:30, 10:30, ...), must fit entirely inside the window, and are dropped when
they overlap one of the candidate's scheduled interviews. Window times are
wall-clock times in the window's own timezone; slots are returned in UTC.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from structlog import get_logger

from bulkflow.core.database import db
from bulkflow.models.scheduling import DAYS_OF_WEEK, END_OF_DAY, parse_clock_time
from bulkflow.services.availability import get_candidate_availability
from bulkflow.types.database import InterviewRecordTD

logger = get_logger()

SLOT_STEP = timedelta(hours=1)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def intervals_overlap(
    start: datetime, end: datetime, other_start: datetime, other_end: datetime
) -> bool:
    """
    Three-way overlap test between [start, end) and [other_start, other_end).

    Intervals that only share an endpoint do not overlap.
    """
    return (
        (other_start <= start < other_end)
        or (other_start < end <= other_end)
        or (start <= other_start and end >= other_end)
    )


def overlapping_interviews(
    interviews: Iterable[Mapping[str, Any]], start: datetime, duration: int
) -> list[Mapping[str, Any]]:
    """Interviews whose [scheduled_at, scheduled_at + duration) overlaps the probe."""
    start = ensure_utc(start)
    end = start + timedelta(minutes=duration)
    hits = []
    for interview in interviews:
        other_start = ensure_utc(interview["scheduled_at"])
        other_end = other_start + timedelta(minutes=interview["duration"])
        if intervals_overlap(start, end, other_start, other_end):
            hits.append(interview)
    return hits


def _daterange(first: date, last: date) -> Iterable[date]:
    day = first
    while day <= last:
        yield day
        day += timedelta(days=1)


def _closing_time(day: date, end: time, tz: tzinfo | None) -> datetime:
    """Wall-clock close of a window on day; END_OF_DAY closes at the next midnight."""
    if end == END_OF_DAY:
        return datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz)
    return datetime.combine(day, end, tzinfo=tz)


def _inside_any(
    local_start: datetime, local_end: datetime, windows: Sequence[tuple[time, time]]
) -> bool:
    day = local_start.date()
    tz = local_start.tzinfo
    return any(
        datetime.combine(day, w_start, tzinfo=tz) <= local_start
        and local_end <= _closing_time(day, w_end, tz)
        for w_start, w_end in windows
    )


def generate_time_slots(
    availability: Iterable[Mapping[str, Any]],
    interviews: Iterable[Mapping[str, Any]],
    duration: int,
    start: datetime,
    end: datetime,
    preferred_days: Iterable[str] | None = None,
    preferred_windows: Sequence[tuple[time, time]] | None = None,
) -> list[datetime]:
    """
    Candidate start times inside [start, end], chronologically ordered.

    Args:
        availability: Active weekly windows (day_of_week, start_time, end_time, timezone)
        interviews: The candidate's scheduled interviews
        duration: Interview length in minutes
        start: Earliest slot start
        end: Latest slot start
        preferred_days: Restrict to these weekdays (local to each window)
        preferred_windows: Restrict to slots fully inside one of these wall-clock windows

    Returns:
        UTC datetimes; empty when there is no availability
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    length = timedelta(minutes=duration)
    busy = list(interviews)
    allowed_days = set(preferred_days) if preferred_days else None

    slots: list[datetime] = []
    for window in availability:
        tz = ZoneInfo(window.get("timezone") or "UTC")
        window_start = parse_clock_time(window["start_time"])
        window_end = parse_clock_time(window["end_time"])

        for day in _daterange(start.astimezone(tz).date(), end.astimezone(tz).date()):
            weekday = DAYS_OF_WEEK[day.weekday()]
            if weekday != window["day_of_week"]:
                continue
            if allowed_days is not None and weekday not in allowed_days:
                continue

            slot = datetime.combine(day, window_start, tzinfo=tz)
            close = _closing_time(day, window_end, tz)
            while slot + length <= close:
                if preferred_windows is None or _inside_any(slot, slot + length, preferred_windows):
                    slot_utc = slot.astimezone(UTC)
                    if start <= slot_utc <= end and not overlapping_interviews(
                        busy, slot_utc, duration
                    ):
                        slots.append(slot_utc)
                slot += SLOT_STEP

    slots.sort()
    return slots


async def get_candidate_interviews(
    candidate_id: int, start: datetime, end: datetime
) -> list[InterviewRecordTD]:
    """Scheduled interviews of a candidate that may touch [start, end + 1 day)."""
    rows = await db.fetch(
        """
        SELECT id, application_id, employer_id, candidate_id, job_id,
               scheduled_at, duration, status, interview_type
        FROM interviews
        WHERE candidate_id = $1
          AND status = 'scheduled'
          AND scheduled_at < $3
          AND scheduled_at + make_interval(mins => duration) > $2
        ORDER BY scheduled_at
    """,
        candidate_id,
        start,
        end + timedelta(days=1),
    )
    return [dict(row.items()) for row in rows]  # type: ignore[misc]


async def find_available_time_slots(
    candidate_id: int,
    employer_id: int,
    duration: int,
    start: datetime,
    end: datetime,
    preferred_days: Iterable[str] | None = None,
    preferred_windows: Sequence[tuple[time, time]] | None = None,
) -> list[datetime]:
    """
    Slots the candidate can attend. Employer conflicts are not checked here.

    An empty list means either no availability on record or no free slot.
    """
    availability = await get_candidate_availability(candidate_id)
    if not availability:
        logger.info("candidate_availability_unknown", candidate_id=candidate_id)
        return []

    interviews = await get_candidate_interviews(candidate_id, ensure_utc(start), ensure_utc(end))
    slots = generate_time_slots(
        availability,
        interviews,
        duration,
        start,
        end,
        preferred_days=preferred_days,
        preferred_windows=preferred_windows,
    )

    logger.debug(
        "time_slots_generated",
        candidate_id=candidate_id,
        employer_id=employer_id,
        slot_count=len(slots),
    )
    return slots
