"""
Test configuration.

- Settings need DATABASE_URL before ``core.config`` is imported; tests run
  against in-memory SQLite (aiosqlite), never against PostgreSQL.
- ``session_factory`` gives each test a fresh schema.
- Browser objects are AsyncMock fakes; nothing launches Chromium.
"""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core import models  # noqa: E402
from core.database import Base, build_engine, build_session_factory  # noqa: E402
from workers.automation.browser_pool import BrowserSession  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's implicit transactions break SAVEPOINT; emit BEGIN ourselves.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """One user watching "audi a4" on OLX.pl, due now."""
    async with session_factory() as session:
        user = models.User(email="buyer@example.com")
        source = models.Source(name="OLX.pl", base_url="https://www.olx.pl")
        session.add_all([user, source])
        await session.flush()
        query = models.MonitoredQuery(
            user_id=user.id,
            source_id=source.id,
            name="audi",
            keywords=["audi", "a4"],
            price_max=Decimal("60000"),
            interval_seconds=300,
        )
        session.add(query)
        await session.commit()
        query.source = source
    return {"user": user, "source": source, "query": query}


def as_utc(moment: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)


def make_browser_session(page: MagicMock | None = None) -> BrowserSession:
    context = AsyncMock()
    browser = AsyncMock()
    page = page or fake_page()
    return BrowserSession(browser=browser, context=context, page=page)


def fake_page(html: str = "", url: str = "https://www.olx.pl/oferty/q-audi-a4/") -> MagicMock:
    """Playwright Page stand-in; sync attributes stay sync."""
    page = AsyncMock()
    page.url = url
    page.content.return_value = html
    page.query_selector.return_value = None
    page.evaluate.return_value = False
    page.set_default_timeout = MagicMock()
    return page
