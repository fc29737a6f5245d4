"""HTTP clients for the notification and profile-enrichment services."""

from __future__ import annotations

from typing import Any

import aiohttp
from structlog import get_logger

from bulkflow.core.config import settings
from bulkflow.core.errors import ConfigurationError, ExternalServiceError

logger = get_logger()


class ServiceClient:
    """JSON-over-HTTP client for one outbound service."""

    def __init__(self, name: str, base_url: str | None, api_key: str | None = None) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = aiohttp.ClientTimeout(total=30)
        self.headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    async def post(self, endpoint: str, json_data: dict[str, Any]) -> dict[str, Any]:
        """
        POST to the service and return the decoded JSON body.

        Raises:
            ConfigurationError: Service URL not configured
            ExternalServiceError: Service rejected the request
            aiohttp.ClientError: Transport failure
        """
        if not self.base_url:
            raise ConfigurationError(f"{self.name} service URL is not configured")

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.info("outbound_request", service=self.name, endpoint=endpoint)

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(url, json=json_data, headers=self.headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.error(
                        "outbound_request_failed",
                        service=self.name,
                        endpoint=endpoint,
                        status=response.status,
                    )
                    raise ExternalServiceError(
                        f"{self.name} request failed ({endpoint}): HTTP {response.status}",
                        service=self.name,
                        context={"body": body[:500]},
                    )
                result: dict[str, Any] = await response.json()
                return result


# Module-level singletons
notification_client = ServiceClient(
    "notification", settings.notification_service_url, settings.outbound_api_key
)
enrichment_client = ServiceClient(
    "enrichment", settings.enrichment_service_url, settings.outbound_api_key
)


async def send_notification(
    recipient_type: str,
    recipient_id: int,
    channel: str,
    title: str,
    message: str,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Queue a notification for one recipient."""
    return await notification_client.post(
        "notifications",
        {
            "recipientType": recipient_type,
            "recipientId": recipient_id,
            "channel": channel,
            "title": title,
            "message": message,
            "metadata": metadata or {},
        },
    )


async def send_campaign_email(
    recipient_type: str,
    recipient_id: int,
    subject: str,
    body: str,
    template_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Queue one campaign email."""
    return await notification_client.post(
        "emails",
        {
            "recipientType": recipient_type,
            "recipientId": recipient_id,
            "subject": subject,
            "body": body,
            "templateId": template_id,
            "metadata": metadata or {},
        },
    )


async def request_profile_enrichment(
    candidate_id: int, sources: list[str], overwrite_existing: bool = False
) -> dict[str, Any]:
    """Ask the enrichment service to refresh a candidate profile."""
    return await enrichment_client.post(
        "enrichments",
        {
            "candidateId": candidate_id,
            "sources": sources,
            "overwriteExisting": overwrite_existing,
        },
    )
