"""Change-event payloads, webhook delivery and Slack alerts."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from core.notifications.dispatcher import NotificationDispatcher
from core.notifications.events import new_listing_event, price_drop_event
from core.notifications.slack import dead_letter_blocks, send_slack_alert


def drop_event():
    return price_drop_event(
        user_id=7,
        listing_id=42,
        title="Audi A4",
        old_price=Decimal("45000.00"),
        new_price=Decimal("42000"),
        currency="PLN",
        listing_url="https://www.olx.pl/d/oferta/abc123",
    )


def test_price_drop_payload():
    assert drop_event().to_payload() == {
        "userId": 7,
        "listingId": 42,
        "type": "price_drop",
        "title": "Price drop: Audi A4",
        "body": "45000 → 42000 PLN",
        "data": {
            "listingUrl": "https://www.olx.pl/d/oferta/abc123",
            "price": "42000",
            "previousPrice": "45000",
        },
    }


def test_new_listing_without_price():
    event = new_listing_event(
        user_id=1, listing_id=2, title="Golf", price=None, currency="PLN", listing_url="https://x.pl/1"
    )
    assert event.body == "Golf - no price"
    assert "price" not in event.to_payload()["data"]


@pytest.mark.asyncio
async def test_dispatch_posts_event_in_background():
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(202)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = NotificationDispatcher("https://notify.local/events", client=client)

    dispatcher.dispatch(drop_event())
    await dispatcher.aclose()

    assert [payload["type"] for payload in received] == ["price_drop"]


@pytest.mark.asyncio
async def test_delivery_errors_are_logged_not_raised(caplog):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    dispatcher = NotificationDispatcher("https://notify.local/events", client=client)

    dispatcher.dispatch(drop_event())
    await dispatcher.aclose()

    assert "Failed to deliver price_drop for listing 42" in caplog.text


@pytest.mark.asyncio
async def test_dispatch_without_webhook_is_skipped():
    calls = []
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: calls.append(r) or httpx.Response(200)))
    dispatcher = NotificationDispatcher("", client=client)

    dispatcher.dispatch(drop_event())
    await dispatcher.aclose()

    assert calls == []


@pytest.mark.asyncio
async def test_slack_alert_sends_blocks():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(200, text="ok")

    ok = await send_slack_alert(
        "dead-lettered",
        blocks=dead_letter_blocks(3, "OLX.pl", 3, "No listing cards"),
        webhook_url="https://hooks.slack.local/x",
        transport=httpx.MockTransport(handler),
    )

    assert ok
    assert sent[0]["text"] == "dead-lettered"
    assert "Query *#3* on *OLX.pl* failed 3 times." in sent[0]["blocks"][0]["text"]["text"]


@pytest.mark.asyncio
async def test_slack_alert_without_webhook(monkeypatch):
    monkeypatch.setattr("core.notifications.slack.settings.slack_webhook_url", "")
    assert await send_slack_alert("nothing configured") is False
