"""
Slack webhook notification sender.

Operator-facing alerts only (e.g. a search job dead-lettered after its
last retry, which usually means a source's extraction rules are stale).
User-facing change events go through ``NotificationDispatcher``.
"""

from __future__ import annotations

import logging

import httpx

from core.config import settings

logger = logging.getLogger(__name__)


async def send_slack_alert(
    text: str,
    *,
    blocks: list[dict] | None = None,
    webhook_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """
    Send a message to the configured Slack webhook.

    Args:
        text: Fallback text for notifications.
        blocks: Optional Slack Block Kit blocks for rich formatting.
        webhook_url: Override of ``SLACK_WEBHOOK_URL``.
        transport: Optional httpx transport (tests).

    Returns:
        True if sent successfully, False otherwise.
    """
    url = webhook_url or settings.slack_webhook_url
    if not url:
        logger.warning("SLACK_WEBHOOK_URL not configured. Alert skipped: %s", text)
        return False

    payload: dict = {"text": text}
    if blocks:
        payload["blocks"] = blocks

    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            logger.info("Slack alert sent successfully.")
            return True
    except httpx.HTTPError as exc:
        logger.error("Failed to send Slack alert: %s", exc)
        return False


def dead_letter_blocks(query_id: int, source_name: str, attempts: int, error: str) -> list[dict]:
    """Block Kit layout for a search job that exhausted its retries."""
    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f":rotating_light: *Search job dead-lettered*\n"
                    f"Query *#{query_id}* on *{source_name}* failed {attempts} times."
                ),
            },
        },
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"`{error[:500]}`"}],
        },
    ]
