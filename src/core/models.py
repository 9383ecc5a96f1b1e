"""
SQLAlchemy 2.0 ORM Models — Listing Ingestion Engine
====================================================

Conventions:
  - snake_case table names
  - BIGINT PKs (auto-increment; INTEGER on SQLite so rowid aliasing works)
  - Explicit FKs
  - created_at on every table

Tables are grouped by functional area:
  0. Boundary (owned by other services, read-only here)
  1. Configuration (user-authored watch definitions)
  2. Results (listings written by the ingestion worker)
  3. Automation (data-defined browser workflows)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base

# BIGINT on PostgreSQL, INTEGER PRIMARY KEY (rowid) on SQLite.
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 2)


# ══════════════════════════════════════════════════════════════════════
# 0. BOUNDARY
# ══════════════════════════════════════════════════════════════════════

class User(Base):
    """
    Account owning monitored queries. Managed by the account service;
    the scheduler only checks ``deleted_at``.
    """
    __tablename__ = "app_user"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    queries: Mapped[list["MonitoredQuery"]] = relationship("MonitoredQuery", back_populates="user")


# ══════════════════════════════════════════════════════════════════════
# 1. CONFIGURATION
# ══════════════════════════════════════════════════════════════════════

class Source(Base):
    """
    A marketplace we scrape (OLX.pl, OTOMOTO, ...).
    ``name`` is normalized to pick the extraction rules and URL dialect.
    """
    __tablename__ = "source"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    base_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Extra query-string parameters merged into every search URL.
    default_parameters: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    queries: Mapped[list["MonitoredQuery"]] = relationship("MonitoredQuery", back_populates="source")
    listings: Mapped[list["Listing"]] = relationship("Listing", back_populates="source")
    workflows: Mapped[list["AutomationWorkflow"]] = relationship(
        "AutomationWorkflow", back_populates="source"
    )


class MonitoredQuery(Base):
    """
    A user's watch definition. The scheduler advances ``next_run_at``;
    the worker stamps ``last_run_at`` after every scrape.
    """
    __tablename__ = "monitored_query"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("app_user.id"), nullable=False)
    source_id: Mapped[int] = mapped_column(ForeignKey("source.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    keywords: Mapped[list[str]] = mapped_column(JSONType, default=list)
    price_min: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    price_max: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    interval_seconds: Mapped[int] = mapped_column(Integer, default=300)
    jitter_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = 20% of interval
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped["User"] = relationship("User", back_populates="queries")
    source: Mapped["Source"] = relationship("Source", back_populates="queries")


# ══════════════════════════════════════════════════════════════════════
# 2. RESULTS
# ══════════════════════════════════════════════════════════════════════

class Listing(Base):
    """
    One classified ad, unique per ``primary_hash`` (source + external id).
    Price is only ever lowered in place; the old value moves to
    ``previous_price``.
    """
    __tablename__ = "listing"
    __table_args__ = (UniqueConstraint("primary_hash", name="uq_listing_primary_hash"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    source_id: Mapped[int] = mapped_column(ForeignKey("source.id"), nullable=False)
    monitored_query_id: Mapped[int | None] = mapped_column(
        ForeignKey("monitored_query.id"), nullable=True
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    previous_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="PLN")
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    listing_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    images: Mapped[list[str]] = mapped_column(JSONType, default=list)
    primary_hash: Mapped[str] = mapped_column(String(32), nullable=False)
    semantic_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_spam: Mapped[bool] = mapped_column(Boolean, default=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    source: Mapped["Source"] = relationship("Source", back_populates="listings")


# ══════════════════════════════════════════════════════════════════════
# 3. AUTOMATION
# ══════════════════════════════════════════════════════════════════════

class AutomationWorkflow(Base):
    """Browser workflow stored as data (e.g. revealing a phone number)."""
    __tablename__ = "automation_workflow"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    source_id: Mapped[int | None] = mapped_column(ForeignKey("source.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    source: Mapped["Source | None"] = relationship("Source", back_populates="workflows")
    steps: Mapped[list["AutomationStep"]] = relationship(
        "AutomationStep",
        back_populates="workflow",
        order_by="AutomationStep.step_order",
        cascade="all, delete-orphan",
    )


class AutomationStep(Base):
    """A single action of an AutomationWorkflow."""
    __tablename__ = "automation_step"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_automation_step_order"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    workflow_id: Mapped[int] = mapped_column(ForeignKey("automation_workflow.id"), nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)  # navigate, click, fill, ...
    css_selector: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    xpath_selector: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    parameters: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    error_recovery: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    workflow: Mapped["AutomationWorkflow"] = relationship("AutomationWorkflow", back_populates="steps")
