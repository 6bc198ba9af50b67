"""
Webhook Notification Adapter

POSTs each message as JSON to a configured endpoint, which is expected to
forward it to the chat transport.
"""
import logging

import httpx

from .adapter import NotificationAdapter

logger = logging.getLogger(__name__)


class WebhookNotificationAdapter(NotificationAdapter):

    def __init__(self, url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport = None):
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def send(self, address: str, message: str) -> None:
        payload = self._serialize_payload({"address": address, "message": message})
        response = await self._client.post(
            self.url,
            content=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        logger.debug(f"Webhook delivered to {address} ({response.status_code})")

    async def close(self) -> None:
        await self._client.aclose()
