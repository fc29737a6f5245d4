"""Pydantic models for availability, scheduling runs and conflicts."""

from __future__ import annotations

from datetime import datetime, time
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DayOfWeek = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
InterviewType = Literal["phone", "video", "onsite", "technical"]
ConflictType = Literal["overlapping", "back_to_back", "resource"]

DAYS_OF_WEEK: tuple[DayOfWeek, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

END_OF_DAY = time(23, 59, 59)


def parse_clock_time(value: str) -> time:
    """
    Parse an "HH:MM" wall-clock string.

    "24:00" is accepted as end of day and mapped to END_OF_DAY, which slot
    generation reads as midnight of the following day.

    Raises:
        ValueError: If the string is not a valid HH:MM time
    """
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    hour, minute = int(parts[0]), int(parts[1])
    if hour == 24 and minute == 0:
        return END_OF_DAY
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return time(hour, minute)


def validate_timezone(value: str) -> str:
    """Ensure value names an IANA timezone."""
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone '{value}'") from e
    return value


# ============================================
# Input Models
# ============================================


class TimeWindow(BaseModel):
    """A daily wall-clock window, e.g. 09:00-12:00."""

    start: str
    end: str

    @model_validator(mode="after")
    def check_order(self) -> TimeWindow:
        if parse_clock_time(self.start) >= parse_clock_time(self.end):
            raise ValueError("start must be before end")
        return self


class SchedulingRules(BaseModel):
    """Rules applied by the bulk scheduler."""

    model_config = ConfigDict(extra="forbid")

    duration: int = Field(default=60, gt=0, le=480)  # minutes
    buffer_minutes: int = Field(default=0, ge=0, le=240)
    max_per_day: int | None = Field(default=None, ge=1)
    preferred_days: list[DayOfWeek] | None = None
    preferred_time_slots: list[TimeWindow] | None = None
    interview_type: InterviewType = "video"


class AvailabilityCreate(BaseModel):
    """Model for adding a weekly availability window."""

    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    timezone: str = "UTC"
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def check_clock(cls, v: str) -> str:
        parse_clock_time(v)
        return v

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        return validate_timezone(v)

    @model_validator(mode="after")
    def check_order(self) -> AvailabilityCreate:
        if parse_clock_time(self.start_time) >= parse_clock_time(self.end_time):
            raise ValueError("start_time must be before end_time")
        return self


class AvailabilityUpdate(BaseModel):
    """Partial update of an availability window."""

    day_of_week: DayOfWeek | None = None
    start_time: str | None = None
    end_time: str | None = None
    timezone: str | None = None
    is_active: bool | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def check_clock(cls, v: str | None) -> str | None:
        if v is not None:
            parse_clock_time(v)
        return v

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        return validate_timezone(v) if v is not None else v


class SchedulingRunCreate(BaseModel):
    """Model for starting a bulk scheduling run."""

    employer_id: int
    job_id: int | None = None
    name: str = Field(min_length=1, max_length=255)
    candidate_ids: list[int] = Field(min_length=1)
    rules: SchedulingRules = Field(default_factory=SchedulingRules)


class ConflictCheckRequest(BaseModel):
    """Probe an employer calendar for overlaps."""

    employer_id: int
    scheduled_at: datetime
    duration: int = Field(gt=0, le=480)


class ConflictCreate(BaseModel):
    """Model for recording an interview conflict."""

    employer_id: int
    conflict_date: datetime
    description: str | None = None
    conflicting_interview_ids: list[int] = Field(default_factory=list)
    conflict_type: ConflictType = "overlapping"


class ResolutionCreate(BaseModel):
    """Model for adding an alternative-time suggestion to a conflict."""

    suggested_time: datetime
    reason: str | None = None
    priority: int = 0


# ============================================
# Response Models
# ============================================


class AvailabilityResponse(BaseModel):
    id: int
    candidate_id: int
    day_of_week: str
    start_time: str
    end_time: str
    timezone: str
    is_active: bool


class AvailabilityListResponse(BaseModel):
    candidate_id: int
    windows: list[AvailabilityResponse]


class InterviewResponse(BaseModel):
    id: int
    application_id: int
    employer_id: int
    candidate_id: int
    job_id: int
    scheduled_at: datetime
    duration: int
    status: str
    interview_type: str | None = None


class ConflictResponse(BaseModel):
    id: int
    employer_id: int
    conflict_date: datetime
    conflicting_interview_ids: list[int]
    conflict_type: str
    description: str | None
    resolved: bool
    resolved_at: datetime | None = None


class ConflictsListResponse(BaseModel):
    count: int
    conflicts: list[ConflictResponse]


class ResolutionResponse(BaseModel):
    id: int
    conflict_id: int
    suggested_time: datetime
    reason: str | None
    priority: int
    applied: bool


class ResolutionsListResponse(BaseModel):
    conflict_id: int
    resolutions: list[ResolutionResponse]


class FailedCandidate(BaseModel):
    candidate_id: int
    reason: str


class SchedulingResult(BaseModel):
    scheduled: list[InterviewResponse]
    conflicts: list[ConflictResponse]
    failed: list[FailedCandidate]


class SchedulingRunResponse(BaseModel):
    id: int
    employer_id: int
    job_id: int | None
    name: str
    total_candidates: int
    scheduled_count: int
    conflict_count: int
    failed_count: int
    status: str
    rules: dict
    created_at: datetime | None = None
    completed_at: datetime | None = None


class SchedulingRunResultResponse(BaseModel):
    run: SchedulingRunResponse
    result: SchedulingResult


class SlotsResponse(BaseModel):
    candidate_id: int
    duration: int
    slots: list[datetime]


class ConflictCheckResponse(BaseModel):
    has_conflicts: bool
    conflicts: list[InterviewResponse]
