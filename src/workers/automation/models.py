"""Data models shared by the browser-automation layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


class ExtractionError(RuntimeError):
    """The page rendered no listing cards at all (retryable at job level)."""


class PoolClosedError(RuntimeError):
    """The browser pool is shutting down; no new sessions are handed out."""


@dataclass(frozen=True, slots=True)
class ExtractedListing:
    """One listing card as read from a search results page."""

    external_id: str
    title: str
    listing_url: str
    price: Decimal | None = None
    currency: str = "PLN"
    location: str | None = None
    phone: str | None = None
    description: str | None = None     # only on detail pages
    images: list[str] = field(default_factory=list)
