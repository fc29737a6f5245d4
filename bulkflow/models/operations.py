"""Pydantic models for bulk operations and their typed parameters."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from bulkflow.models.scheduling import SchedulingRules


class OperationType(StrEnum):
    STATUS_UPDATE = "status_update"
    SEND_NOTIFICATION = "send_notification"
    SCHEDULE_INTERVIEW = "schedule_interview"
    EXPORT_DATA = "export_data"
    ENRICH_PROFILES = "enrich_profiles"
    SEND_EMAIL_CAMPAIGN = "send_email_campaign"


class TargetType(StrEnum):
    CANDIDATE = "candidate"
    APPLICATION = "application"
    INTERVIEW = "interview"
    JOB = "job"


class OperationStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ItemStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset(
    {OperationStatus.COMPLETED, OperationStatus.FAILED, OperationStatus.CANCELLED}
)


# ============================================
# Operation Parameters (one model per type)
# ============================================


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid")


class StatusUpdateParams(_Params):
    new_status: str = Field(min_length=1, max_length=64)


class SendNotificationParams(_Params):
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    channel: Literal["in_app", "email", "sms"] = "in_app"


class ScheduleInterviewParams(_Params):
    employer_id: int
    job_id: int | None = None
    rules: SchedulingRules = Field(default_factory=SchedulingRules)


class ExportDataParams(_Params):
    format: Literal["json", "csv"] = "json"
    fields: list[str] | None = None


class EnrichProfilesParams(_Params):
    sources: list[str] = Field(default_factory=lambda: ["linkedin"], min_length=1)
    overwrite_existing: bool = False


class SendEmailCampaignParams(_Params):
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    template_id: int | None = None


OperationParams = (
    StatusUpdateParams
    | SendNotificationParams
    | ScheduleInterviewParams
    | ExportDataParams
    | EnrichProfilesParams
    | SendEmailCampaignParams
)

PARAMS_MODELS: dict[OperationType, type[_Params]] = {
    OperationType.STATUS_UPDATE: StatusUpdateParams,
    OperationType.SEND_NOTIFICATION: SendNotificationParams,
    OperationType.SCHEDULE_INTERVIEW: ScheduleInterviewParams,
    OperationType.EXPORT_DATA: ExportDataParams,
    OperationType.ENRICH_PROFILES: EnrichProfilesParams,
    OperationType.SEND_EMAIL_CAMPAIGN: SendEmailCampaignParams,
}


# ============================================
# Input Models
# ============================================


class OperationCreate(BaseModel):
    """Request body for submitting a bulk operation."""

    operation_type: OperationType
    target_ids: list[int] = Field(min_length=1)
    target_type: TargetType
    operation_params: dict[str, Any] = Field(default_factory=dict)


# ============================================
# Response Models
# ============================================


class OperationCreateResponse(BaseModel):
    success: bool
    operation_id: int
    target_count: int


class OperationCancelResponse(BaseModel):
    success: bool
    operation_id: int


class OperationResponse(BaseModel):
    id: int
    owner_id: int
    operation_type: str
    status: OperationStatus
    target_count: int
    processed_count: int
    success_count: int
    failed_count: int
    target_criteria: dict[str, Any]
    operation_params: dict[str, Any]
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: int | None = None
    processing_time: int | None = None
    error_summary: str | None = None
    results_summary: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class OperationItemResponse(BaseModel):
    id: int
    operation_id: int
    target_id: int
    target_type: str
    status: ItemStatus
    processed_at: datetime | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None


class OperationDetailsResponse(BaseModel):
    operation: OperationResponse
    items: list[OperationItemResponse]


class OperationsListResponse(BaseModel):
    count: int
    operations: list[OperationResponse]


class OperationStatsResponse(BaseModel):
    total_operations: int
    completed_operations: int
    failed_operations: int
    cancelled_operations: int
    success_rate: int
    total_items_processed: int
    total_items_success: int
    total_items_failed: int
    item_success_rate: int
    average_processing_time: int
