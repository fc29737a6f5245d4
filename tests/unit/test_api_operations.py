"""Tests for bulk operation endpoints (bulkflow/api/operations.py)."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from bulkflow.core.config import settings
from bulkflow.core.errors import InvalidStateError, NotFoundError, ValidationError
from tests.fixtures.factories import create_item_record, create_operation_record

OWNER = {"X-User-Id": "1"}

VALID_BODY = {
    "operation_type": "status_update",
    "target_ids": [101, 102],
    "target_type": "candidate",
    "operation_params": {"new_status": "archived"},
}


@pytest.mark.asyncio
async def test_create_operation_accepted(http_client):
    """Submitting returns 202 with the operation id before processing finishes."""
    with patch(
        "bulkflow.api.operations.submit_operation",
        new_callable=AsyncMock,
        return_value=create_operation_record(operation_id=9, target_ids=[101, 102]),
    ) as mock_submit:
        response = await http_client.post("/operations", json=VALID_BODY, headers=OWNER)

    assert response.status_code == 202
    assert response.json() == {"success": True, "operation_id": 9, "target_count": 2}
    mock_submit.assert_awaited_once_with(
        1, "status_update", [101, 102], "candidate", {"new_status": "archived"}
    )


@pytest.mark.asyncio
async def test_create_operation_requires_caller(http_client):
    response = await http_client.post("/operations", json=VALID_BODY)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "HTTP_401"


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id", ["abc", "0", "-4"])
async def test_create_operation_rejects_bad_caller(http_client, user_id):
    response = await http_client.post(
        "/operations", json=VALID_BODY, headers={"X-User-Id": user_id}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"target_ids": []},
        {"operation_type": "launch_rockets"},
        {"target_type": "planet"},
    ],
)
async def test_create_operation_body_validation(http_client, overrides):
    with patch("bulkflow.api.operations.submit_operation", new_callable=AsyncMock) as mock_submit:
        response = await http_client.post(
            "/operations", json={**VALID_BODY, **overrides}, headers=OWNER
        )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    mock_submit.assert_not_called()


@pytest.mark.asyncio
async def test_create_operation_invalid_params(http_client):
    """Parameter errors raised by the service surface as 422."""
    with patch(
        "bulkflow.api.operations.submit_operation",
        new_callable=AsyncMock,
        side_effect=ValidationError("Invalid parameters for status_update"),
    ):
        response = await http_client.post("/operations", json=VALID_BODY, headers=OWNER)

    assert response.status_code == 422
    assert response.json()["error"]["message"] == "Invalid parameters for status_update"


@pytest.mark.asyncio
async def test_list_operations_filters(http_client):
    operations = [create_operation_record(operation_id=2), create_operation_record(operation_id=1)]
    with patch(
        "bulkflow.api.operations.ledger.list_operations",
        new_callable=AsyncMock,
        return_value=operations,
    ) as mock_list:
        response = await http_client.get(
            "/operations?status=pending&operation_type=status_update&limit=5&offset=10",
            headers=OWNER,
        )

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 2
    assert [op["id"] for op in data["operations"]] == [2, 1]
    mock_list.assert_awaited_once_with(
        1, status="pending", operation_type="status_update", limit=5, offset=10
    )


@pytest.mark.asyncio
async def test_list_operations_limit_bounds(http_client):
    response = await http_client.get("/operations?limit=101", headers=OWNER)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_operation_details(http_client):
    details = {
        "operation": create_operation_record(operation_id=4, status="processing"),
        "items": [create_item_record(1, 101, operation_id=4, status="completed")],
    }
    with patch(
        "bulkflow.api.operations.ledger.get_operation_details",
        new_callable=AsyncMock,
        return_value=details,
    ) as mock_details:
        response = await http_client.get("/operations/4", headers=OWNER)

    assert response.status_code == 200
    data = response.json()
    assert data["operation"]["status"] == "processing"
    assert data["items"][0]["status"] == "completed"
    mock_details.assert_awaited_once_with(4, 1)


@pytest.mark.asyncio
async def test_get_operation_not_owned(http_client):
    """Another owner's operation is indistinguishable from a missing one."""
    with patch(
        "bulkflow.api.operations.ledger.get_operation_details",
        new_callable=AsyncMock,
        side_effect=NotFoundError("Operation 4 not found"),
    ):
        response = await http_client.get("/operations/4", headers={"X-User-Id": "2"})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_cancel_operation(http_client):
    with patch(
        "bulkflow.api.operations.ledger.cancel_operation", new_callable=AsyncMock
    ) as mock_cancel:
        response = await http_client.post("/operations/4/cancel", headers=OWNER)

    assert response.status_code == 200
    assert response.json() == {"success": True, "operation_id": 4}
    mock_cancel.assert_awaited_once_with(4, 1)


@pytest.mark.asyncio
async def test_cancel_finished_operation_conflict(http_client):
    with patch(
        "bulkflow.api.operations.ledger.cancel_operation",
        new_callable=AsyncMock,
        side_effect=InvalidStateError("Operation 4 is already completed"),
    ):
        response = await http_client.post("/operations/4/cancel", headers=OWNER)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_STATE"


@pytest.mark.asyncio
async def test_operation_stats_default_period(http_client):
    stats = {
        "total_operations": 2,
        "completed_operations": 1,
        "failed_operations": 1,
        "cancelled_operations": 0,
        "success_rate": 50,
        "total_items_processed": 4,
        "total_items_success": 3,
        "total_items_failed": 1,
        "item_success_rate": 75,
        "average_processing_time": 120,
    }
    with patch(
        "bulkflow.api.operations.ledger.get_operation_stats",
        new_callable=AsyncMock,
        return_value=stats,
    ) as mock_stats:
        response = await http_client.get("/operations/stats", headers=OWNER)

    assert response.status_code == 200
    assert response.json() == stats
    owner_id, start, end = mock_stats.call_args[0]
    assert owner_id == 1
    assert (end - start).days == 30


@pytest.mark.asyncio
async def test_operation_stats_explicit_period(http_client):
    with patch(
        "bulkflow.api.operations.ledger.get_operation_stats",
        new_callable=AsyncMock,
        side_effect=ValidationError("period_start must be before period_end"),
    ):
        response = await http_client.get(
            "/operations/stats?period_start=2030-02-01T00:00:00Z&period_end=2030-01-01T00:00:00Z",
            headers=OWNER,
        )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_operation_rate_limited(http_client):
    """Submissions beyond the per-caller limit get 429."""
    allowed = int(settings.operation_rate_limit.split("/")[0])
    with patch(
        "bulkflow.api.operations.submit_operation",
        new_callable=AsyncMock,
        return_value=create_operation_record(operation_id=9),
    ):
        statuses = [
            (await http_client.post("/operations", json=VALID_BODY, headers=OWNER)).status_code
            for _ in range(allowed + 1)
        ]

    assert statuses[:allowed] == [202] * allowed
    assert statuses[allowed] == 429
