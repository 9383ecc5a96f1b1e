"""
Job queue adapter.

The scheduler only knows ``SearchQueue.enqueue``; production uses arq on
Redis, tests pass an in-memory fake.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Protocol

from arq.connections import ArqRedis

from workers.search.models import SearchJob

logger = logging.getLogger(__name__)

SEARCH_JOB_FUNCTION = "run_search_job"

# arq pops jobs by score (= due time). Manual runs are scored this far in
# the past so they overtake everything already due.
PRIORITY_HEADSTART = timedelta(minutes=5)


class SearchQueue(Protocol):
    async def enqueue(
        self,
        job: SearchJob,
        *,
        job_id: str,
        delay_ms: int = 0,
        priority: bool = False,
    ) -> str | None: ...


class ArqSearchQueue:
    """Enqueues SearchJobs as ``run_search_job`` calls on an arq pool."""

    def __init__(self, redis: ArqRedis) -> None:
        self.redis = redis

    async def enqueue(
        self,
        job: SearchJob,
        *,
        job_id: str,
        delay_ms: int = 0,
        priority: bool = False,
    ) -> str | None:
        """Returns the job id, or None when a job with that id already exists."""
        options: dict = {"_job_id": job_id}
        if priority:
            options["_defer_until"] = datetime.now(timezone.utc) - PRIORITY_HEADSTART
        elif delay_ms > 0:
            options["_defer_by"] = timedelta(milliseconds=delay_ms)

        queued = await self.redis.enqueue_job(SEARCH_JOB_FUNCTION, job.to_payload(), **options)
        if queued is None:
            logger.warning("Job %s already queued, skipped", job_id)
            return None
        logger.debug("Enqueued %s (delay=%dms, priority=%s)", job_id, delay_ms, priority)
        return queued.job_id
