"""
Notification boundary.

The ingestion worker hands every ChangeEvent to ``NotificationDispatcher``
and moves on: delivery runs in a background task and its outcome never
affects the job. Events are POSTed as JSON to ``NOTIFICATION_WEBHOOK_URL``
(the notification service owns push/e-mail fan-out from there).
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from core.config import settings
from core.notifications.events import ChangeEvent

logger = logging.getLogger(__name__)

DELIVERY_TIMEOUT = 10.0


class NotificationDispatcher:
    """Fire-and-forget delivery of change events."""

    def __init__(
        self,
        webhook_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = settings.notification_webhook_url if webhook_url is None else webhook_url
        self._client = client
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, event: ChangeEvent) -> None:
        """Schedule delivery of ``event`` without waiting for it."""
        if not self.webhook_url:
            logger.debug(
                "NOTIFICATION_WEBHOOK_URL not configured, %s for listing %d not sent.",
                event.type, event.listing_id,
            )
            return
        task = asyncio.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _deliver(self, event: ChangeEvent) -> bool:
        payload = event.to_payload()
        try:
            client = self._get_client()
            response = await client.post(self.webhook_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                "Failed to deliver %s for listing %d: %s", event.type, event.listing_id, exc,
            )
            return False
        logger.debug("Delivered %s for listing %d", event.type, event.listing_id)
        return True

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DELIVERY_TIMEOUT)
        return self._client
