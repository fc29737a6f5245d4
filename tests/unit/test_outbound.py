"""Tests for outbound service clients (bulkflow/clients/outbound.py)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bulkflow.clients.outbound import (
    ServiceClient,
    request_profile_enrichment,
    send_campaign_email,
    send_notification,
)
from bulkflow.core.errors import ConfigurationError, ExternalServiceError
from tests.fixtures.factories import AsyncContextManager


def mock_session(status: int, json_body=None, text_body: str = ""):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_body)
    response.text = AsyncMock(return_value=text_body)
    session = MagicMock()
    session.post = MagicMock(return_value=AsyncContextManager(response))
    return session


@pytest.mark.asyncio
async def test_send_notification_payload():
    with patch(
        "bulkflow.clients.outbound.notification_client.post", new_callable=AsyncMock
    ) as mock_post:
        mock_post.return_value = {"id": "n-1"}

        result = await send_notification(
            "candidate", 101, "email", "Hello", "Body", metadata={"operation_id": 4}
        )

    assert result == {"id": "n-1"}
    endpoint, payload = mock_post.call_args[0]
    assert endpoint == "notifications"
    assert payload == {
        "recipientType": "candidate",
        "recipientId": 101,
        "channel": "email",
        "title": "Hello",
        "message": "Body",
        "metadata": {"operation_id": 4},
    }


@pytest.mark.asyncio
async def test_send_campaign_email_payload():
    with patch(
        "bulkflow.clients.outbound.notification_client.post", new_callable=AsyncMock
    ) as mock_post:
        await send_campaign_email("candidate", 101, "News", "Body", template_id=3)

    endpoint, payload = mock_post.call_args[0]
    assert endpoint == "emails"
    assert payload["templateId"] == 3
    assert payload["metadata"] == {}


@pytest.mark.asyncio
async def test_request_profile_enrichment_payload():
    with patch(
        "bulkflow.clients.outbound.enrichment_client.post", new_callable=AsyncMock
    ) as mock_post:
        await request_profile_enrichment(101, ["github", "linkedin"], overwrite_existing=True)

    endpoint, payload = mock_post.call_args[0]
    assert endpoint == "enrichments"
    assert payload == {
        "candidateId": 101,
        "sources": ["github", "linkedin"],
        "overwriteExisting": True,
    }


@pytest.mark.asyncio
async def test_unconfigured_service_raises():
    client = ServiceClient("notification", None)

    with pytest.raises(ConfigurationError, match="not configured"):
        await client.post("notifications", {})


@pytest.mark.asyncio
async def test_post_returns_json_and_sends_auth():
    client = ServiceClient("enrichment", "https://enrich.example.com/", api_key="secret")
    session = mock_session(200, json_body={"id": "e-1"})

    with patch(
        "bulkflow.clients.outbound.aiohttp.ClientSession",
        return_value=AsyncContextManager(session),
    ):
        result = await client.post("/enrichments", {"candidateId": 1})

    assert result == {"id": "e-1"}
    url = session.post.call_args[0][0]
    assert url == "https://enrich.example.com/enrichments"
    assert session.post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_post_error_status_raises_external_service_error():
    client = ServiceClient("notification", "https://notify.example.com")
    session = mock_session(503, text_body="unavailable")

    with patch(
        "bulkflow.clients.outbound.aiohttp.ClientSession",
        return_value=AsyncContextManager(session),
    ):
        with pytest.raises(ExternalServiceError) as exc_info:
            await client.post("notifications", {})

    assert "HTTP 503" in str(exc_info.value)
    assert exc_info.value.context["service"] == "notification"
    assert exc_info.value.context["body"] == "unavailable"
