"""Candidate availability windows and open interview slots."""

from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from bulkflow.api.deps import get_current_owner
from bulkflow.core.config import settings
from bulkflow.core.errors import ValidationError
from bulkflow.models.scheduling import (
    AvailabilityCreate,
    AvailabilityListResponse,
    AvailabilityResponse,
    AvailabilityUpdate,
    SlotsResponse,
)
from bulkflow.services import availability as availability_service
from bulkflow.services.slots import ensure_utc, find_available_time_slots

router = APIRouter(tags=["availability"], dependencies=[Depends(get_current_owner)])


@router.get("/candidates/{candidate_id}/availability", response_model=AvailabilityListResponse)
async def list_availability(
    candidate_id: int, active_only: bool = True
) -> AvailabilityListResponse:
    windows = await availability_service.get_candidate_availability(
        candidate_id, active_only=active_only
    )
    return AvailabilityListResponse(
        candidate_id=candidate_id,
        windows=[AvailabilityResponse(**w) for w in windows],
    )


@router.post(
    "/candidates/{candidate_id}/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_availability(candidate_id: int, body: AvailabilityCreate) -> AvailabilityResponse:
    """Add a weekly window. Overlapping an active window on the same day is rejected."""
    window = await availability_service.set_candidate_availability(
        candidate_id,
        body.day_of_week,
        body.start_time,
        body.end_time,
        timezone=body.timezone,
        is_active=body.is_active,
    )
    return AvailabilityResponse(**window)


@router.patch("/availability/{availability_id}", response_model=AvailabilityResponse)
async def update_availability(
    availability_id: int, body: AvailabilityUpdate
) -> AvailabilityResponse:
    window = await availability_service.update_candidate_availability(
        availability_id, body.model_dump(exclude_unset=True)
    )
    return AvailabilityResponse(**window)


@router.delete("/availability/{availability_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_availability(availability_id: int) -> Response:
    await availability_service.delete_candidate_availability(availability_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/candidates/{candidate_id}/slots", response_model=SlotsResponse)
async def list_slots(
    candidate_id: int,
    employer_id: int,
    duration: Annotated[int, Query(gt=0, le=480)] = 60,
    start: datetime | None = None,
    end: datetime | None = None,
) -> SlotsResponse:
    """
    Open slots for a candidate, in UTC.

    Defaults to now through the scheduling horizon. Employer conflicts are
    not applied here; use POST /scheduling/conflicts/check for that.
    """
    range_start = ensure_utc(start) if start else datetime.now(UTC)
    range_end = (
        ensure_utc(end) if end else range_start + timedelta(days=settings.scheduling_horizon_days)
    )
    if range_start > range_end:
        raise ValidationError("start must not be after end")

    slots = await find_available_time_slots(
        candidate_id, employer_id, duration, range_start, range_end
    )
    return SlotsResponse(candidate_id=candidate_id, duration=duration, slots=slots)
