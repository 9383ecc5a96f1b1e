"""
Randomized timing shared by the scheduler and the search worker.

Both sides compute ``next_run_at`` with ``compute_next_run`` so a query's
cadence stays within ``interval ± jitter`` whoever advanced it last.
"""

from __future__ import annotations

import asyncio
import math
import random
from datetime import datetime, timedelta

from core.config import settings


def jitter_range(interval_seconds: int, jitter_seconds: int | None = None, *, ratio: float | None = None) -> int:
    """
    Half-width of the jitter window, in seconds.

    Defaults to ``ratio`` (20%) of the interval and is capped at
    ``interval - 1`` so the next run is always in the future.
    """
    if jitter_seconds is None:
        ratio = settings.default_jitter_ratio if ratio is None else ratio
        jitter_seconds = math.floor(interval_seconds * ratio)
    return max(0, min(abs(jitter_seconds), interval_seconds - 1))


def compute_next_run(
    now: datetime,
    interval_seconds: int | None,
    jitter_seconds: int | None = None,
    *,
    ratio: float | None = None,
    rng: random.Random | None = None,
) -> datetime:
    """``now + interval + U(-jitter, +jitter)`` with whole-second jitter."""
    rng = rng or random
    interval = max(1, interval_seconds or settings.default_interval_seconds)
    spread = jitter_range(interval, jitter_seconds, ratio=ratio)
    offset = rng.randint(-spread, spread) if spread else 0
    return now + timedelta(seconds=interval + offset)


async def random_delay(min_seconds: float, max_seconds: float) -> None:
    """Human-like pause between page interactions."""
    await asyncio.sleep(random.uniform(min_seconds, max_seconds))
