"""
Async database engine and session factory.

Uses SQLAlchemy 2.0 async API with the asyncpg driver in production.
Workers never share a session across jobs: every job, scheduling pass and
API request opens its own session from ``async_session_factory``.
"""

from __future__ import annotations

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from core.config import settings


def build_engine(url: str, **overrides) -> AsyncEngine:
    """Create an async engine; SQLite URLs skip the connection-pool sizing."""
    options: dict = {"echo": False, "pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(pool_size=10, max_overflow=20)
    options.update(overrides)
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with objects usable after commit (jobs read them back)."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# ── Engine / Session Factory ──────────────────────────────────────────

engine = build_engine(settings.database_url)
async_session_factory = build_session_factory(engine)


# ── Base Model ────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


# ── Dependency (for FastAPI) ──────────────────────────────────────────

def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the process-wide session factory."""
    return async_session_factory
