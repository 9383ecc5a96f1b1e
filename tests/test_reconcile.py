"""Listing reconciliation: inserts, duplicate suppression, price drops, races."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from core import models
from core.hashing import primary_hash, semantic_hash
from core.notifications.events import ChangeType
from workers.automation.models import ExtractedListing
from workers.search import processor
from workers.search.models import SearchJob
from workers.search.processor import reconcile_listings


def audi(price="45000", external_id="abc123", phone=None):
    return ExtractedListing(
        external_id=external_id,
        title="Audi A4",
        listing_url=f"https://www.olx.pl/d/oferta/{external_id}",
        price=Decimal(price) if price is not None else None,
        phone=phone,
    )


@pytest.fixture
def job(seeded):
    return SearchJob.from_query(seeded["query"])


async def count_listings(session_factory):
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(models.Listing))


@pytest.mark.asyncio
async def test_new_listing_is_stored_with_hashes(session_factory, job):
    async with session_factory() as session:
        outcome = await reconcile_listings(session, job, [audi()])
        await session.commit()

    assert len(outcome.new_listing_ids) == 1
    (event,) = outcome.events
    assert event.type is ChangeType.NEW_LISTING
    assert event.user_id == job.user_id
    assert event.body == "Audi A4 - 45000 PLN"

    async with session_factory() as session:
        listing = await session.get(models.Listing, outcome.new_listing_ids[0])
    assert listing.primary_hash == primary_hash(job.source_id, "abc123")
    assert listing.semantic_hash == semantic_hash("Audi A4", Decimal("45000"), None)
    assert listing.monitored_query_id == job.query_id
    assert listing.price == Decimal("45000")
    assert listing.previous_price is None


@pytest.mark.asyncio
async def test_same_listing_twice_is_ingested_once(session_factory, job):
    for _ in range(2):
        async with session_factory() as session:
            outcome = await reconcile_listings(session, job, [audi()])
            await session.commit()

    assert outcome.events == []
    assert outcome.new_listing_ids == []
    assert await count_listings(session_factory) == 1


@pytest.mark.asyncio
async def test_lower_price_is_a_price_drop(session_factory, job):
    async with session_factory() as session:
        await reconcile_listings(session, job, [audi("45000")])
        await session.commit()

    async with session_factory() as session:
        outcome = await reconcile_listings(session, job, [audi("42000")])
        await session.commit()

    (event,) = outcome.events
    assert event.type is ChangeType.PRICE_DROP
    assert event.price == Decimal("42000")
    assert event.previous_price == Decimal("45000")
    assert event.body == "45000 → 42000 PLN"

    async with session_factory() as session:
        listing = await session.scalar(select(models.Listing))
    assert listing.price == Decimal("42000")
    assert listing.previous_price == Decimal("45000")


@pytest.mark.asyncio
@pytest.mark.parametrize("later_price", ["45000", "47000", None])
async def test_equal_higher_or_missing_price_is_ignored(session_factory, job, later_price):
    async with session_factory() as session:
        await reconcile_listings(session, job, [audi("45000")])
        await session.commit()

    async with session_factory() as session:
        outcome = await reconcile_listings(session, job, [audi(later_price)])
        await session.commit()

    assert outcome.events == []
    async with session_factory() as session:
        listing = await session.scalar(select(models.Listing))
    assert listing.price == Decimal("45000")
    assert listing.previous_price is None


@pytest.mark.asyncio
async def test_phone_from_card_is_stored_and_hashed(session_factory, job):
    async with session_factory() as session:
        outcome = await reconcile_listings(session, job, [audi(phone="+48600100200")])
        await session.commit()

    async with session_factory() as session:
        listing = await session.get(models.Listing, outcome.new_listing_ids[0])
    assert listing.phone == "+48600100200"
    assert listing.semantic_hash == semantic_hash("Audi A4", Decimal("45000"), "+48600100200")


@pytest.mark.asyncio
async def test_concurrent_insert_falls_back_to_update(session_factory, job, monkeypatch):
    async with session_factory() as session:
        await reconcile_listings(session, job, [audi("45000")])
        await session.commit()

    # Simulate the other job winning the race: the first lookup misses.
    real_find = processor._find_listing
    calls = {"n": 0}

    async def racing_find(session, p_hash):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await real_find(session, p_hash)

    monkeypatch.setattr(processor, "_find_listing", racing_find)

    async with session_factory() as session:
        outcome = await reconcile_listings(session, job, [audi("40000")])
        await session.commit()

    assert [event.type for event in outcome.events] == [ChangeType.PRICE_DROP]
    assert await count_listings(session_factory) == 1
