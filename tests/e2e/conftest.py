"""E2E test fixtures for HTTP testing."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from bulkflow.main import app
from bulkflow.middleware.rate_limit import limiter
from bulkflow.services.executor import executor

OWNER = {"X-User-Id": "1"}


@pytest_asyncio.fixture
async def http_client(clean_db):
    """HTTP client for testing actual FastAPI app.

    Uses the clean_db fixture to ensure database is clean for each test.
    The app's lifespan context manager is not run - operations still execute
    on the module executor, but the recovery job is not scheduled.
    """
    limiter.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await executor.shutdown()


async def drain_executor() -> None:
    """Wait for every operation submitted through the API to finish."""
    while executor.active_count:
        await asyncio.gather(*list(executor._tasks.values()))


@pytest.fixture
def mock_outbound():
    """Mock notification and enrichment service calls for E2E tests."""
    with (
        patch(
            "bulkflow.clients.outbound.notification_client.post",
            new_callable=AsyncMock,
        ) as mock_notify,
        patch(
            "bulkflow.clients.outbound.enrichment_client.post",
            new_callable=AsyncMock,
        ) as mock_enrich,
    ):
        mock_notify.side_effect = lambda path, payload: {"id": f"msg-{payload['recipientId']}"}
        mock_enrich.return_value = {"id": "enrich-1"}
        yield {"notification": mock_notify, "enrichment": mock_enrich}
