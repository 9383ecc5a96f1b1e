"""
Search Scheduler — ARQ cron job
===============================
Every tick:
1. Select due MonitoredQuery rows (active, owner not deleted, source active,
   ``next_run_at`` unset or in the past), oldest first, one batch at most
2. Enqueue a ``run_search_job`` per query with a small random delay so a
   batch does not hit the marketplaces at the same instant
3. Push ``next_run_at`` forward (interval ± jitter) and commit per query

A failing pass is logged and skipped; the next tick starts over.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import contains_eager, joinedload

from core.config import settings
from core.models import MonitoredQuery, Source, User
from workers.search.models import SearchJob
from workers.search.queue import ArqSearchQueue, SearchQueue
from workers.search.timing import compute_next_run

logger = logging.getLogger(__name__)


class QueryNotFoundError(LookupError):
    """No MonitoredQuery with the requested id."""


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class SearchScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: SearchQueue,
        *,
        batch_size: int | None = None,
        max_initial_delay_ms: int | None = None,
        jitter_ratio: float | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.batch_size = batch_size or settings.scheduler_batch_size
        self.max_initial_delay_ms = (
            settings.scheduler_max_initial_delay_ms
            if max_initial_delay_ms is None
            else max_initial_delay_ms
        )
        self.jitter_ratio = settings.default_jitter_ratio if jitter_ratio is None else jitter_ratio
        self.rng = rng or random.Random()

    async def run_pass(self, now: datetime | None = None) -> int:
        """Enqueue every due query of one batch. Returns how many were enqueued."""
        now = now or datetime.now(timezone.utc)
        try:
            return await self._schedule_due(now)
        except Exception:
            logger.exception("Scheduling pass failed")
            return 0

    async def _schedule_due(self, now: datetime) -> int:
        enqueued = 0
        async with self.session_factory() as session:
            result = await session.execute(
                select(MonitoredQuery)
                .join(MonitoredQuery.user)
                .join(MonitoredQuery.source)
                .options(contains_eager(MonitoredQuery.source))
                .where(
                    MonitoredQuery.is_active.is_(True),
                    User.deleted_at.is_(None),
                    Source.is_active.is_(True),
                    or_(MonitoredQuery.next_run_at.is_(None), MonitoredQuery.next_run_at <= now),
                )
                .order_by(MonitoredQuery.next_run_at.asc().nullsfirst(), MonitoredQuery.id)
                .limit(self.batch_size)
            )
            due = result.scalars().unique().all()
            if not due:
                logger.debug("No searches due")
                return 0

            for query in due:
                job_id = f"search-{query.id}-{_epoch_ms(now)}"
                delay_ms = self.rng.randint(0, self.max_initial_delay_ms)
                await self.queue.enqueue(SearchJob.from_query(query), job_id=job_id, delay_ms=delay_ms)

                query.next_run_at = compute_next_run(
                    now,
                    query.interval_seconds,
                    query.jitter_seconds,
                    ratio=self.jitter_ratio,
                    rng=self.rng,
                )
                await session.commit()
                enqueued += 1
                logger.debug(
                    "Scheduled query %d (%s) in %dms, next run %s",
                    query.id, query.source.name, delay_ms, query.next_run_at.isoformat(),
                )

        logger.info("Scheduled %d searches", enqueued)
        return enqueued

    async def trigger_manual_run(self, query_id: int) -> str | None:
        """Queue an immediate, prioritized run of one query."""
        async with self.session_factory() as session:
            query = await session.get(
                MonitoredQuery, query_id, options=[joinedload(MonitoredQuery.source)]
            )
            if query is None:
                raise QueryNotFoundError(f"Monitored query {query_id} not found")
            job = SearchJob.from_query(query, manual=True)

        job_id = f"manual-{query_id}-{_epoch_ms(datetime.now(timezone.utc))}"
        queued = await self.queue.enqueue(job, job_id=job_id, priority=True)
        logger.info("Manual run of query %d queued as %s", query_id, job_id)
        return queued


async def schedule_due_searches(ctx: dict) -> int:
    """ARQ cron job: one scheduling pass."""
    scheduler = SearchScheduler(ctx["session_factory"], ArqSearchQueue(ctx["redis"]))
    return await scheduler.run_pass()
