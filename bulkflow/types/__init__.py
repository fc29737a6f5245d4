"""Type definitions for database records."""

from bulkflow.types.database import (
    ApplicationRecordTD,
    AvailabilityRecordTD,
    ConflictRecordTD,
    InterviewRecordTD,
    OperationItemRecordTD,
    OperationRecordTD,
    ResolutionRecordTD,
    SchedulingRunRecordTD,
)

__all__ = [
    "ApplicationRecordTD",
    "AvailabilityRecordTD",
    "ConflictRecordTD",
    "InterviewRecordTD",
    "OperationItemRecordTD",
    "OperationRecordTD",
    "ResolutionRecordTD",
    "SchedulingRunRecordTD",
]
