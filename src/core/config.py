"""
Configuration management with pydantic-settings.

Every environment variable is validated on startup. A missing required
variable makes the process fail immediately with a clear message
(fail-fast).
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────────────────
    database_url: str = Field(
        description="Async connection string (postgresql+asyncpg://...)",
    )
    database_url_sync: str = Field(
        default="",
        description="Sync connection string for Alembic (postgresql://...)",
    )

    # ── Redis / ARQ ───────────────────────────────────────────────────
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection string for ARQ workers.",
    )

    # ── Notifications ─────────────────────────────────────────────────
    notification_webhook_url: str = Field(
        default="",
        description="Endpoint receiving new_listing / price_drop events.",
    )
    slack_webhook_url: str = Field(
        default="",
        description="Slack incoming webhook URL for operator alerts.",
    )

    # ── Logging ───────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")

    # ── Browser (Playwright) ──────────────────────────────────────────
    playwright_headless: bool = Field(default=True)
    navigation_timeout_ms: int = Field(default=30_000, gt=0)
    selector_timeout_ms: int = Field(default=10_000, gt=0)
    browser_pool_size: int = Field(default=3, ge=1)
    browser_session_idle_seconds: float = Field(default=300.0, gt=0)
    browser_pool_retry_seconds: float = Field(default=1.0, gt=0)

    # ── Scheduler ─────────────────────────────────────────────────────
    scheduler_tick_seconds: int = Field(
        default=30,
        ge=1,
        le=60,
        description="Seconds between scheduling passes (must divide 60).",
    )
    scheduler_batch_size: int = Field(default=10, ge=1)
    scheduler_max_initial_delay_ms: int = Field(default=10_000, ge=0)
    default_interval_seconds: int = Field(default=300, ge=1)
    default_jitter_ratio: float = Field(default=0.2, ge=0.0, lt=1.0)

    # ── Worker / queue ────────────────────────────────────────────────
    worker_concurrency: int = Field(default=2, ge=1)
    job_max_tries: int = Field(default=3, ge=1)
    job_retry_base_seconds: float = Field(default=5.0, ge=0)
    job_timeout_seconds: int = Field(default=180, ge=1)
    job_keep_result_seconds: int = Field(default=3600, ge=0)

    # ── Features ──────────────────────────────────────────────────────
    extract_phone_numbers: bool = Field(
        default=False,
        description="Open each new listing and reveal the seller's phone.",
    )
    phone_enrichment_max_listings: int = Field(
        default=10,
        ge=0,
        description="New listings per search whose phone is revealed.",
    )
    phone_enrichment_budget_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Time a search may spend revealing phones (part of the job timeout).",
    )

    @field_validator("scheduler_tick_seconds")
    @classmethod
    def _tick_divides_minute(cls, value: int) -> int:
        if 60 % value:
            raise ValueError("scheduler_tick_seconds must divide 60 (1, 2, 3, 4, 5, 6, 10, 12, 15, 20, 30 or 60)")
        return value


# Singleton instance — import this everywhere
settings = Settings()  # type: ignore[call-arg]
