"""Interview scheduling endpoints: runs, conflict checks, resolutions."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from structlog import get_logger

from bulkflow.api.deps import get_current_owner
from bulkflow.core.errors import NotFoundError
from bulkflow.models.scheduling import (
    ConflictCheckRequest,
    ConflictCheckResponse,
    ConflictCreate,
    ConflictResponse,
    ConflictsListResponse,
    InterviewResponse,
    ResolutionCreate,
    ResolutionResponse,
    ResolutionsListResponse,
    SchedulingResult,
    SchedulingRunCreate,
    SchedulingRunResponse,
    SchedulingRunResultResponse,
)
from bulkflow.services import conflicts as conflict_service
from bulkflow.services.scheduling import (
    create_scheduling_run,
    get_employer_for_owner,
    get_scheduling_run,
)
from bulkflow.types.database import ConflictRecordTD

logger = get_logger()
router = APIRouter(prefix="/scheduling", tags=["scheduling"])

Owner = Annotated[int, Depends(get_current_owner)]


async def _owned_conflict(conflict_id: int, owner_id: int) -> ConflictRecordTD:
    conflict = await conflict_service.get_conflict(conflict_id)
    if conflict is None:
        raise NotFoundError(
            f"Conflict {conflict_id} not found", context={"conflict_id": conflict_id}
        )
    await get_employer_for_owner(conflict["employer_id"], owner_id)
    return conflict


# ============================================
# Scheduling runs
# ============================================


@router.post(
    "/runs",
    response_model=SchedulingRunResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_run(body: SchedulingRunCreate, owner_id: Owner) -> SchedulingRunResultResponse:
    """
    Schedule interviews for a batch of candidates.

    Runs synchronously: the response carries every booked interview, every
    recorded conflict, and a reason for each candidate that could not be
    scheduled.
    """
    logger.info(
        "scheduling_run_requested",
        employer_id=body.employer_id,
        job_id=body.job_id,
        candidates=len(body.candidate_ids),
    )
    outcome = await create_scheduling_run(
        owner_id,
        body.employer_id,
        body.job_id,
        body.name,
        body.candidate_ids,
        body.rules,
    )
    return SchedulingRunResultResponse(
        run=SchedulingRunResponse(**outcome["run"]),
        result=SchedulingResult(**outcome["result"]),
    )


@router.get("/runs/{run_id}", response_model=SchedulingRunResponse)
async def get_run(run_id: int, owner_id: Owner) -> SchedulingRunResponse:
    run = await get_scheduling_run(run_id, owner_id)
    return SchedulingRunResponse(**run)


# ============================================
# Conflicts
# ============================================


@router.post("/conflicts/check", response_model=ConflictCheckResponse)
async def check_conflicts(body: ConflictCheckRequest, owner_id: Owner) -> ConflictCheckResponse:
    """Scheduled interviews of the employer that would overlap the proposed interval."""
    await get_employer_for_owner(body.employer_id, owner_id)
    found = await conflict_service.check_interview_conflicts(
        body.employer_id, body.scheduled_at, body.duration
    )
    return ConflictCheckResponse(
        has_conflicts=bool(found),
        conflicts=[InterviewResponse(**interview) for interview in found],
    )


@router.get("/conflicts", response_model=ConflictsListResponse)
async def list_unresolved_conflicts(employer_id: int, owner_id: Owner) -> ConflictsListResponse:
    await get_employer_for_owner(employer_id, owner_id)
    found = await conflict_service.get_unresolved_conflicts(employer_id)
    return ConflictsListResponse(
        count=len(found), conflicts=[ConflictResponse(**c) for c in found]
    )


@router.post(
    "/conflicts", response_model=ConflictResponse, status_code=status.HTTP_201_CREATED
)
async def create_conflict(body: ConflictCreate, owner_id: Owner) -> ConflictResponse:
    await get_employer_for_owner(body.employer_id, owner_id)
    conflict = await conflict_service.create_conflict(
        body.employer_id,
        body.conflict_date,
        description=body.description,
        conflicting_interview_ids=body.conflicting_interview_ids,
        conflict_type=body.conflict_type,
    )
    return ConflictResponse(**conflict)


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictResponse)
async def resolve_conflict(conflict_id: int, owner_id: Owner) -> ConflictResponse:
    await _owned_conflict(conflict_id, owner_id)
    conflict = await conflict_service.resolve_conflict(conflict_id)
    return ConflictResponse(**conflict)


# ============================================
# Resolutions
# ============================================


@router.get("/conflicts/{conflict_id}/resolutions", response_model=ResolutionsListResponse)
async def list_resolutions(conflict_id: int, owner_id: Owner) -> ResolutionsListResponse:
    """Suggested alternatives for a conflict, most preferred first."""
    await _owned_conflict(conflict_id, owner_id)
    resolutions = await conflict_service.get_resolutions(conflict_id)
    return ResolutionsListResponse(
        conflict_id=conflict_id,
        resolutions=[ResolutionResponse(**r) for r in resolutions],
    )


@router.post(
    "/conflicts/{conflict_id}/resolutions",
    response_model=ResolutionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_resolution(
    conflict_id: int, body: ResolutionCreate, owner_id: Owner
) -> ResolutionResponse:
    await _owned_conflict(conflict_id, owner_id)
    resolution = await conflict_service.create_resolution(
        conflict_id, body.suggested_time, reason=body.reason, priority=body.priority
    )
    return ResolutionResponse(**resolution)


@router.post("/resolutions/{resolution_id}/apply", response_model=ResolutionResponse)
async def apply_resolution(resolution_id: int, owner_id: Owner) -> ResolutionResponse:
    """
    Mark a resolution applied.

    Moving the interview to the suggested time is left to the caller.
    """
    resolution = await conflict_service.get_resolution(resolution_id)
    if resolution is None:
        raise NotFoundError(
            f"Resolution {resolution_id} not found", context={"resolution_id": resolution_id}
        )
    await _owned_conflict(resolution["conflict_id"], owner_id)
    applied = await conflict_service.apply_resolution(resolution_id)
    return ResolutionResponse(**applied)
