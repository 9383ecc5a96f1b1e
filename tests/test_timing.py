"""Next-run computation stays within interval ± jitter."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

from hypothesis import given
from hypothesis import strategies as st

from workers.search.timing import compute_next_run, jitter_range

NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def test_default_jitter_is_twenty_percent():
    assert jitter_range(300) == 60
    assert jitter_range(300, ratio=0.1) == 30


def test_explicit_jitter_is_capped_below_interval():
    assert jitter_range(60, 30) == 30
    assert jitter_range(60, 600) == 59
    assert jitter_range(1, 5) == 0


def test_no_jitter_gives_exact_interval():
    assert compute_next_run(NOW, 300, 0) == NOW + timedelta(seconds=300)


def test_missing_interval_uses_default():
    next_run = compute_next_run(NOW, None, 0)
    assert next_run == NOW + timedelta(seconds=300)


@given(
    interval=st.integers(min_value=1, max_value=86_400),
    jitter=st.one_of(st.none(), st.integers(min_value=0, max_value=100_000)),
    seed=st.integers(min_value=0, max_value=2**32 - 1),
)
def test_next_run_is_bounded_and_in_the_future(interval, jitter, seed):
    next_run = compute_next_run(NOW, interval, jitter, rng=random.Random(seed))
    spread = jitter_range(interval, jitter)
    delta = (next_run - NOW).total_seconds()

    assert interval - spread <= delta <= interval + spread
    assert next_run > NOW
