"""Tests for interview scheduling endpoints (bulkflow/api/scheduling.py)."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest

from bulkflow.core.errors import NotFoundError
from tests.fixtures.factories import NOW, create_interview

OWNER = {"X-User-Id": "1"}
SLOT = datetime(2030, 1, 7, 9, tzinfo=UTC)


def run_record(**overrides) -> dict:
    record = {
        "id": 3,
        "employer_id": 7,
        "job_id": 2,
        "name": "Onsite batch",
        "total_candidates": 2,
        "scheduled_count": 1,
        "conflict_count": 1,
        "failed_count": 1,
        "status": "completed",
        "rules": {"duration": 60},
        "created_at": NOW,
        "completed_at": NOW,
    }
    record.update(overrides)
    return record


def conflict_record(conflict_id: int = 5, employer_id: int = 7) -> dict:
    return {
        "id": conflict_id,
        "employer_id": employer_id,
        "conflict_date": SLOT,
        "conflicting_interview_ids": [1],
        "conflict_type": "overlapping",
        "description": "Candidate 2: all 1 available slots overlap existing interviews",
        "resolved": False,
        "resolved_at": None,
    }


def resolution_record(resolution_id: int = 8, applied: bool = False) -> dict:
    return {
        "id": resolution_id,
        "conflict_id": 5,
        "suggested_time": SLOT,
        "reason": "Earliest free slot for candidate 2",
        "priority": 1,
        "applied": applied,
    }


@pytest.mark.asyncio
async def test_create_run_returns_outcome(http_client):
    outcome = {
        "run": run_record(),
        "result": {
            "scheduled": [create_interview(SLOT, candidate_id=1, employer_id=7)],
            "conflicts": [conflict_record()],
            "failed": [{"candidate_id": 2, "reason": "All available slots have conflicts"}],
        },
    }
    with patch(
        "bulkflow.api.scheduling.create_scheduling_run",
        new_callable=AsyncMock,
        return_value=outcome,
    ) as mock_create:
        response = await http_client.post(
            "/scheduling/runs",
            json={
                "employer_id": 7,
                "job_id": 2,
                "name": "Onsite batch",
                "candidate_ids": [1, 2],
                "rules": {"duration": 45, "buffer_minutes": 15},
            },
            headers=OWNER,
        )

    assert response.status_code == 201
    data = response.json()
    assert data["run"]["scheduled_count"] == 1
    assert data["result"]["scheduled"][0]["candidate_id"] == 1
    assert data["result"]["failed"] == [
        {"candidate_id": 2, "reason": "All available slots have conflicts"}
    ]
    owner_id, employer_id, job_id, name, candidate_ids, rules = mock_create.call_args[0]
    assert (owner_id, employer_id, job_id, candidate_ids) == (1, 7, 2, [1, 2])
    assert rules.duration == 45
    assert rules.buffer_minutes == 15


@pytest.mark.asyncio
async def test_create_run_rejects_unknown_rule(http_client):
    response = await http_client.post(
        "/scheduling/runs",
        json={"employer_id": 7, "name": "x", "candidate_ids": [1], "rules": {"speed": 3}},
        headers=OWNER,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_run_for_foreign_employer(http_client):
    with patch(
        "bulkflow.api.scheduling.create_scheduling_run",
        new_callable=AsyncMock,
        side_effect=NotFoundError("Employer 7 not found"),
    ):
        response = await http_client.post(
            "/scheduling/runs",
            json={"employer_id": 7, "name": "x", "candidate_ids": [1]},
            headers={"X-User-Id": "2"},
        )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_run(http_client):
    with patch(
        "bulkflow.api.scheduling.get_scheduling_run",
        new_callable=AsyncMock,
        return_value=run_record(),
    ):
        response = await http_client.get("/scheduling/runs/3", headers=OWNER)

    assert response.status_code == 200
    assert response.json()["name"] == "Onsite batch"


@pytest.mark.asyncio
async def test_check_conflicts(http_client):
    busy = create_interview(SLOT, employer_id=7)
    with (
        patch("bulkflow.api.scheduling.get_employer_for_owner", new_callable=AsyncMock),
        patch(
            "bulkflow.api.scheduling.conflict_service.check_interview_conflicts",
            new_callable=AsyncMock,
            return_value=[busy],
        ) as mock_check,
    ):
        response = await http_client.post(
            "/scheduling/conflicts/check",
            json={"employer_id": 7, "scheduled_at": "2030-01-07T09:30:00Z", "duration": 30},
            headers=OWNER,
        )

    assert response.status_code == 200
    data = response.json()
    assert data["has_conflicts"] is True
    assert data["conflicts"][0]["id"] == busy["id"]
    assert mock_check.call_args[0][2] == 30


@pytest.mark.asyncio
async def test_list_unresolved_conflicts(http_client):
    with (
        patch("bulkflow.api.scheduling.get_employer_for_owner", new_callable=AsyncMock),
        patch(
            "bulkflow.api.scheduling.conflict_service.get_unresolved_conflicts",
            new_callable=AsyncMock,
            return_value=[conflict_record()],
        ),
    ):
        response = await http_client.get("/scheduling/conflicts?employer_id=7", headers=OWNER)

    assert response.status_code == 200
    assert response.json()["count"] == 1


@pytest.mark.asyncio
async def test_create_conflict(http_client):
    with (
        patch("bulkflow.api.scheduling.get_employer_for_owner", new_callable=AsyncMock),
        patch(
            "bulkflow.api.scheduling.conflict_service.create_conflict",
            new_callable=AsyncMock,
            return_value=conflict_record(),
        ) as mock_create,
    ):
        response = await http_client.post(
            "/scheduling/conflicts",
            json={
                "employer_id": 7,
                "conflict_date": "2030-01-07T09:00:00Z",
                "conflicting_interview_ids": [1],
            },
            headers=OWNER,
        )

    assert response.status_code == 201
    assert mock_create.call_args.kwargs["conflict_type"] == "overlapping"


@pytest.mark.asyncio
async def test_resolve_conflict_of_other_owner_is_404(http_client):
    with (
        patch(
            "bulkflow.api.scheduling.conflict_service.get_conflict",
            new_callable=AsyncMock,
            return_value=conflict_record(),
        ),
        patch(
            "bulkflow.api.scheduling.get_employer_for_owner",
            new_callable=AsyncMock,
            side_effect=NotFoundError("Employer 7 not found"),
        ),
        patch(
            "bulkflow.api.scheduling.conflict_service.resolve_conflict", new_callable=AsyncMock
        ) as mock_resolve,
    ):
        response = await http_client.post(
            "/scheduling/conflicts/5/resolve", headers={"X-User-Id": "2"}
        )

    assert response.status_code == 404
    mock_resolve.assert_not_called()


@pytest.mark.asyncio
async def test_resolve_missing_conflict(http_client):
    with patch(
        "bulkflow.api.scheduling.conflict_service.get_conflict",
        new_callable=AsyncMock,
        return_value=None,
    ):
        response = await http_client.post("/scheduling/conflicts/5/resolve", headers=OWNER)

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Conflict 5 not found"


@pytest.mark.asyncio
async def test_list_resolutions(http_client):
    with (
        patch(
            "bulkflow.api.scheduling.conflict_service.get_conflict",
            new_callable=AsyncMock,
            return_value=conflict_record(),
        ),
        patch("bulkflow.api.scheduling.get_employer_for_owner", new_callable=AsyncMock),
        patch(
            "bulkflow.api.scheduling.conflict_service.get_resolutions",
            new_callable=AsyncMock,
            return_value=[resolution_record()],
        ),
    ):
        response = await http_client.get("/scheduling/conflicts/5/resolutions", headers=OWNER)

    assert response.status_code == 200
    data = response.json()
    assert data["conflict_id"] == 5
    assert data["resolutions"][0]["priority"] == 1


@pytest.mark.asyncio
async def test_apply_resolution(http_client):
    with (
        patch(
            "bulkflow.api.scheduling.conflict_service.get_resolution",
            new_callable=AsyncMock,
            return_value=resolution_record(),
        ),
        patch(
            "bulkflow.api.scheduling.conflict_service.get_conflict",
            new_callable=AsyncMock,
            return_value=conflict_record(),
        ),
        patch("bulkflow.api.scheduling.get_employer_for_owner", new_callable=AsyncMock),
        patch(
            "bulkflow.api.scheduling.conflict_service.apply_resolution",
            new_callable=AsyncMock,
            return_value=resolution_record(applied=True),
        ),
    ):
        response = await http_client.post("/scheduling/resolutions/8/apply", headers=OWNER)

    assert response.status_code == 200
    assert response.json()["applied"] is True


@pytest.mark.asyncio
async def test_apply_missing_resolution(http_client):
    with patch(
        "bulkflow.api.scheduling.conflict_service.get_resolution",
        new_callable=AsyncMock,
        return_value=None,
    ):
        response = await http_client.post("/scheduling/resolutions/8/apply", headers=OWNER)

    assert response.status_code == 404
