"""Database record type definitions.

NOTE: This file must track database/schema.sql manually.
Use NotRequired for nullable/optional columns.
JSONB columns arrive from asyncpg as strings and are decoded in the
service layer before a record leaves it.
"""

from datetime import datetime
from typing import Any, NotRequired, TypedDict


class OperationRecordTD(TypedDict):
    """Record from bulk_operations table.

    Used in: ledger.py, executor.py, api/operations.py
    """

    id: int
    owner_id: int
    operation_type: str
    status: str
    target_count: int
    processed_count: int
    success_count: int
    failed_count: int
    target_criteria: dict[str, Any]
    operation_params: dict[str, Any]
    started_at: NotRequired[datetime | None]
    completed_at: NotRequired[datetime | None]
    cancelled_at: NotRequired[datetime | None]
    cancelled_by: NotRequired[int | None]
    processing_time: NotRequired[int | None]
    error_summary: NotRequired[str | None]
    results_summary: NotRequired[dict[str, Any] | None]
    created_at: datetime
    updated_at: datetime


class OperationItemRecordTD(TypedDict):
    """Record from bulk_operation_items table.

    Used in: ledger.py, executor.py, handlers.py
    """

    id: int
    operation_id: int
    target_id: int
    target_type: str
    status: str
    processed_at: NotRequired[datetime | None]
    error_message: NotRequired[str | None]
    result: NotRequired[dict[str, Any] | None]
    created_at: NotRequired[datetime]


class AvailabilityRecordTD(TypedDict):
    """Record from candidate_availability table.

    Used in: availability.py, slots.py
    """

    id: int
    candidate_id: int
    day_of_week: str
    start_time: str
    end_time: str
    timezone: str
    is_active: bool


class InterviewRecordTD(TypedDict):
    """Record from interviews table.

    Used in: slots.py, conflicts.py, scheduling.py
    """

    id: int
    application_id: int
    employer_id: int
    candidate_id: int
    job_id: int
    scheduled_at: datetime
    duration: int
    status: str
    interview_type: NotRequired[str]


class ApplicationRecordTD(TypedDict):
    """Record from applications table (read-only here).

    Used in: scheduling.py
    """

    id: int
    candidate_id: int
    job_id: int


class ConflictRecordTD(TypedDict):
    """Record from interview_conflicts table.

    Used in: conflicts.py, scheduling.py
    """

    id: int
    employer_id: int
    conflict_date: datetime
    conflicting_interview_ids: list[int]
    conflict_type: str
    description: NotRequired[str | None]
    resolved: bool
    resolved_at: NotRequired[datetime | None]
    created_at: NotRequired[datetime]


class ResolutionRecordTD(TypedDict):
    """Record from conflict_resolutions table.

    Used in: conflicts.py
    """

    id: int
    conflict_id: int
    suggested_time: datetime
    reason: NotRequired[str | None]
    priority: int
    applied: bool


class SchedulingRunRecordTD(TypedDict):
    """Record from scheduling_runs table.

    Used in: scheduling.py, api/scheduling.py
    """

    id: int
    employer_id: int
    job_id: NotRequired[int | None]
    name: str
    total_candidates: int
    scheduled_count: int
    conflict_count: int
    failed_count: int
    status: str
    rules: dict[str, Any]
    created_at: NotRequired[datetime]
    completed_at: NotRequired[datetime | None]
