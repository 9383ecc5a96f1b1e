"""
Smoke test: run one search end to end against a live marketplace.

Creates (or reuses) a smoke-test user and query, runs ``process_search``
directly (no Redis needed) and prints the summary.

Run:  PYTHONPATH=src python scripts/smoke_test_search.py "OLX.pl" audi a4
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sqlalchemy import select  # noqa: E402
from sqlalchemy.orm import joinedload  # noqa: E402

from core.config import settings  # noqa: E402
from core.database import async_session_factory  # noqa: E402
from core.log_config import configure_logging  # noqa: E402
from core.models import Listing, MonitoredQuery, Source, User  # noqa: E402
from core.notifications.dispatcher import NotificationDispatcher  # noqa: E402
from workers.automation.browser_pool import BrowserSessionPool  # noqa: E402
from workers.search.models import SearchJob  # noqa: E402
from workers.search.processor import process_search  # noqa: E402

SMOKE_EMAIL = "smoke-test@adwatch.local"


async def main(source_name: str, keywords: list[str]) -> None:
    configure_logging("INFO")
    print(f"🚀 Starting Smoke Test: {source_name} / {' '.join(keywords)}")

    async with async_session_factory() as session:
        source = await session.scalar(select(Source).where(Source.name == source_name))
        if source is None:
            print(f"  ❌ Source {source_name!r} not found. Run scripts/seed_sources.py first.")
            return

        user = await session.scalar(select(User).where(User.email == SMOKE_EMAIL))
        if user is None:
            print("  ➕ Creating smoke-test user...")
            user = User(email=SMOKE_EMAIL)
            session.add(user)
            await session.flush()

        query = MonitoredQuery(
            user_id=user.id,
            source_id=source.id,
            name="smoke test",
            keywords=keywords,
            is_active=False,  # keep the scheduler away from it
        )
        session.add(query)
        await session.commit()
        query = await session.scalar(
            select(MonitoredQuery)
            .options(joinedload(MonitoredQuery.source))
            .where(MonitoredQuery.id == query.id)
        )
        job = SearchJob.from_query(query, manual=True)
        print(f"  ✅ Query ready (ID: {query.id})")

    pool = BrowserSessionPool(
        max_size=1,
        idle_timeout=settings.browser_session_idle_seconds,
        retry_interval=settings.browser_pool_retry_seconds,
        headless=settings.playwright_headless,
    )
    notifier = NotificationDispatcher()
    try:
        print("\n🔍 Running search...")
        summary = await process_search(
            job, pool=pool, session_factory=async_session_factory, notifier=notifier
        )
    finally:
        await notifier.aclose()
        await pool.shutdown()

    print(f"\n🏁 Finished: {summary}")
    async with async_session_factory() as session:
        listings = (
            await session.scalars(
                select(Listing).where(Listing.monitored_query_id == job.query_id).limit(10)
            )
        ).all()
        for listing in listings:
            print(f"  • {listing.title} — {listing.price} {listing.currency} — {listing.listing_url}")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(sys.argv[1], sys.argv[2:]))
