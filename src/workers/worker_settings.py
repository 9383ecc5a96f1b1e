"""
ARQ Worker Settings — Registers all background jobs.

Usage:
    arq workers.worker_settings.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from core.config import settings
from core.database import async_session_factory
from core.log_config import configure_logging
from core.notifications.dispatcher import NotificationDispatcher
from workers.automation.browser_pool import BrowserSessionPool
from workers.search.processor import (
    evict_idle_browser_sessions,
    run_automation_workflow,
    run_search_job,
)
from workers.search.scheduler import schedule_due_searches

logger = logging.getLogger(__name__)

# arq cancels a job hard at job_timeout; run_search_job times itself out
# earlier so its retry and dead-letter handling still runs.
JOB_TIMEOUT_MARGIN_SECONDS = 30


async def startup(ctx: dict) -> None:
    """Called on worker startup: owns the browser pool for the process."""
    configure_logging()
    ctx["session_factory"] = async_session_factory
    ctx["notifier"] = NotificationDispatcher()
    ctx["browser_pool"] = BrowserSessionPool(
        max_size=settings.browser_pool_size,
        idle_timeout=settings.browser_session_idle_seconds,
        retry_interval=settings.browser_pool_retry_seconds,
        headless=settings.playwright_headless,
        default_timeout_ms=settings.navigation_timeout_ms,
    )
    logger.info(
        "Worker started (concurrency=%d, browser pool=%d)",
        settings.worker_concurrency, settings.browser_pool_size,
    )


async def shutdown(ctx: dict) -> None:
    """Called on worker shutdown: flush notifications, close every browser."""
    notifier: NotificationDispatcher | None = ctx.get("notifier")
    if notifier is not None:
        await notifier.aclose()
    pool: BrowserSessionPool | None = ctx.get("browser_pool")
    if pool is not None:
        await pool.shutdown()
    logger.info("Worker stopped")


def _tick_seconds() -> set[int]:
    return set(range(0, 60, settings.scheduler_tick_seconds))


class WorkerSettings:
    """ARQ worker configuration."""

    functions = [
        run_search_job,
        run_automation_workflow,
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = RedisSettings.from_dsn(settings.redis_url)

    max_jobs = settings.worker_concurrency
    job_timeout = settings.job_timeout_seconds + JOB_TIMEOUT_MARGIN_SECONDS
    max_tries = settings.job_max_tries
    keep_result = settings.job_keep_result_seconds

    # Cron schedule
    cron_jobs = [
        # Scheduler: every tick (30s by default)
        cron(schedule_due_searches, second=_tick_seconds(), run_at_startup=True, unique=True),
        # Browser pool housekeeping: every minute
        cron(evict_idle_browser_sessions, second={15}),
    ]
