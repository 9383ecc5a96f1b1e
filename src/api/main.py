"""
FastAPI application entry point.

Minimal HTTP surface next to the worker: health check and manual search
triggering.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from arq import create_pool
from arq.connections import RedisSettings
from fastapi import FastAPI

from api.routes.searches import router as searches_router
from core.config import settings
from core.log_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: ARQ connection pool for enqueueing jobs."""
    configure_logging()
    app.state.arq = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    logger.info("API started")
    yield
    await app.state.arq.aclose()


app = FastAPI(
    title="Listing Ingestion Engine",
    description="Scheduled marketplace searches, listing deduplication and change events",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Routes ────────────────────────────────────────────────────────────
app.include_router(searches_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "adwatch-engine"}
