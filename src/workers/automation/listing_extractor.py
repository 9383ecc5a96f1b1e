"""
Listing Extractor — applies an ExtractionRule to a rendered results page.

The browser is only used to wait for the cards to render; the DOM is then
snapshotted (``page.content()``) and parsed with BeautifulSoup, so the same
code runs against saved HTML in tests and smoke scripts.

Per-card problems never abort the page: a card without a title or a link is
dropped, a missing optional field just stays empty. Only a page that never
renders a single card raises ExtractionError.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterator
from decimal import Decimal, InvalidOperation
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.config import settings
from workers.automation.extraction_rules import ExtractionRule, FieldRule, get_rule
from workers.automation.models import ExtractedListing, ExtractionError

logger = logging.getLogger(__name__)

MAX_LISTINGS_PER_PAGE = 50

_WHITESPACE = re.compile(r"\s+")


async def extract_listings(
    page: Page,
    source_name: str,
    *,
    timeout_ms: int | None = None,
) -> Iterator[ExtractedListing]:
    """
    Lazily extract listings from the page currently loaded in ``page``.

    Returns an empty iterator for sources without a rule.
    Raises ExtractionError when no listing card shows up in time.
    """
    rule = get_rule(source_name)
    if rule is None:
        return iter(())

    try:
        await page.wait_for_selector(
            rule.container, timeout=timeout_ms or settings.selector_timeout_ms
        )
    except PlaywrightTimeoutError as exc:
        raise ExtractionError(
            f"No listing cards matching {rule.container!r} on {page.url}"
        ) from exc

    html = await page.content()
    return iter_listings(html, page.url, rule, source_name=source_name)


def iter_listings(
    html: str,
    page_url: str,
    rule: ExtractionRule,
    *,
    limit: int = MAX_LISTINGS_PER_PAGE,
    source_name: str = "",
) -> Iterator[ExtractedListing]:
    """Yield at most ``limit`` listings found in ``html``."""
    soup = BeautifulSoup(html, "html.parser")
    cards = soup.select(rule.container, limit=limit)

    extracted = 0
    for index, card in enumerate(cards):
        try:
            listing = extract_card(card, rule, page_url)
        except Exception as exc:
            logger.debug("Failed to extract listing card #%d: %s", index, exc)
            continue
        if listing is None:
            logger.debug("Skipping listing card #%d without title or link", index)
            continue
        extracted += 1
        yield listing

    logger.info(
        "Extracted %d/%d listings from %s", extracted, len(cards), source_name or page_url,
    )


def extract_card(card: Tag, rule: ExtractionRule, page_url: str) -> ExtractedListing | None:
    """Build one ExtractedListing, or None when a required field is missing."""
    title = _read_field(card, rule.title)
    title = _WHITESPACE.sub(" ", title).strip() if title else ""
    if not title:
        return None

    href = _read_field(card, rule.link)
    listing_url = resolve_url(href, page_url)
    if not listing_url:
        return None

    price = parse_price(_read_field(card, rule.price)) if rule.price else None

    location = _read_field(card, rule.location) if rule.location else None
    location = _WHITESPACE.sub(" ", location).strip() if location else None

    images: list[str] = []
    if rule.image:
        src = _read_field(card, rule.image)
        image_url = resolve_url(src, page_url) if src and not src.startswith("data:") else None
        if image_url:
            images.append(image_url)

    phone = _read_field(card, rule.phone) if rule.phone else None

    return ExtractedListing(
        external_id=_external_id(card, rule, listing_url),
        title=title,
        listing_url=listing_url,
        price=price,
        currency=rule.currency,
        location=location or None,
        phone=phone.strip() if phone else None,
        images=images,
    )


def parse_price(text: str | None) -> Decimal | None:
    """'45 000' → Decimal('45000'); '12 999,99' → Decimal('12999.99'); junk → None."""
    if not text:
        return None
    cleaned = _WHITESPACE.sub("", text).replace(",", ".")
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def resolve_url(href: str | None, page_url: str) -> str | None:
    """Absolute http(s) URL for ``href`` relative to the document, or None."""
    if not href or not href.strip():
        return None
    absolute = urljoin(page_url, href.strip())
    if urlsplit(absolute).scheme not in ("http", "https"):
        return None
    return absolute


# ── Field helpers ─────────────────────────────────────────────────────

def _read_field(card: Tag, field: FieldRule) -> str | None:
    element = card if field.selector is None else card.select_one(field.selector)
    if element is None:
        return None
    if field.attribute:
        value = element.get(field.attribute)
        if isinstance(value, list):  # multi-valued attributes such as class
            value = " ".join(value)
    else:
        value = element.get_text(" ", strip=True)
    if value is None:
        return None
    if field.regex:
        return _first_group(field.regex, value)
    return value


def _first_group(pattern: str, text: str) -> str | None:
    match = re.search(pattern, text)
    if match is None:
        return None
    groups = [g for g in match.groups() if g is not None]
    return groups[0] if groups else match.group(0)


def _external_id(card: Tag, rule: ExtractionRule, listing_url: str) -> str:
    if rule.external_id:
        value = _read_field(card, rule.external_id)
        if value and value.strip():
            return value.strip()
    segment = urlsplit(listing_url).path.rstrip("/").rsplit("/", 1)[-1]
    if segment:
        return segment
    return str(time.time_ns())
