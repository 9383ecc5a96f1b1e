"""Settings validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


@pytest.mark.parametrize("tick", [1, 15, 30, 60])
def test_tick_dividing_a_minute_is_accepted(tick):
    assert Settings(database_url="sqlite+aiosqlite://", scheduler_tick_seconds=tick).scheduler_tick_seconds == tick


@pytest.mark.parametrize("tick", [7, 25, 45])
def test_tick_not_dividing_a_minute_is_rejected(tick):
    with pytest.raises(ValidationError, match="must divide 60"):
        Settings(database_url="sqlite+aiosqlite://", scheduler_tick_seconds=tick)


def test_phone_enrichment_limits_have_defaults():
    config = Settings(database_url="sqlite+aiosqlite://")
    assert config.phone_enrichment_max_listings == 10
    assert 0 < config.phone_enrichment_budget_seconds < config.job_timeout_seconds
