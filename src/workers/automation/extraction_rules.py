"""
Declarative extraction rules, one per marketplace.

Flow:
  Step 1 → Normalize the source name ("OLX.pl" → "olx")
  Step 2 → Look the key up in EXTRACTION_RULES (aliases first)
  Step 3 → The listing extractor applies the rule to a rendered page

Adding a marketplace is a data change: add an ExtractionRule entry here.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_TLD_SUFFIX = re.compile(r"\.(?:com\.pl|pl|com|eu|net)$", re.IGNORECASE)
_NON_LETTERS = re.compile(r"[^a-z]")


@dataclass(frozen=True, slots=True)
class FieldRule:
    """
    Where one field lives inside a listing card.

    ``selector=None`` addresses the card element itself. Without an
    ``attribute`` the element's text is read. ``regex`` keeps its first
    matching group (or the whole match when it has none).
    """

    selector: str | None
    attribute: str | None = None
    regex: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractionRule:
    container: str
    title: FieldRule
    link: FieldRule
    price: FieldRule | None = None
    location: FieldRule | None = None
    image: FieldRule | None = None
    external_id: FieldRule | None = None
    phone: FieldRule | None = None
    currency: str = "PLN"


# ── Registry: normalized source key → rule ────────────────────────────

EXTRACTION_RULES: dict[str, ExtractionRule] = {
    "olx": ExtractionRule(
        container='[data-cy="l-card"]',
        title=FieldRule("h4, h6"),
        price=FieldRule('[data-testid="ad-price"]', regex=r"([\d\s]+)"),
        location=FieldRule('[data-testid="location-date"]'),
        link=FieldRule("a", attribute="href"),
        image=FieldRule("img", attribute="src"),
        external_id=FieldRule("a", attribute="href", regex=r"/d/oferta/([^/?#]+)|/oferta/([^/?#]+)"),
    ),
    # OTOMOTO search results share OLX's card markup on some listings pages.
    "otomoto": ExtractionRule(
        container='[data-cy="l-card"], article[data-id], [data-testid="listing-ad"]',
        title=FieldRule("h4, h1, h2"),
        price=FieldRule(
            '[data-testid="ad-price"], [data-testid="listing-price"]', regex=r"([\d\s]+)"
        ),
        location=FieldRule('[data-testid="location-date"], [data-testid="location"]'),
        link=FieldRule("a", attribute="href"),
        image=FieldRule("img", attribute="src"),
        external_id=FieldRule(None, attribute="data-id"),
    ),
    "allegro": ExtractionRule(
        container="article[data-item]",
        title=FieldRule("h2, .mgn2_14"),
        price=FieldRule('[data-role="price"]', regex=r"([\d\s,]+)"),
        location=FieldRule('[data-role="delivery"]'),
        link=FieldRule('a[href*="/oferta/"]', attribute="href"),
        image=FieldRule("img", attribute="src"),
        external_id=FieldRule(None, attribute="data-item"),
    ),
    "sprzedajemy": ExtractionRule(
        container=".offer",
        title=FieldRule(".title a"),
        price=FieldRule(".price", regex=r"([\d\s]+)"),
        location=FieldRule(".location"),
        link=FieldRule(".title a", attribute="href"),
        image=FieldRule("img", attribute="src"),
        external_id=FieldRule(None, attribute="data-id"),
    ),
    "autoplac": ExtractionRule(
        container=".offer-item, .car-item, article.listing",
        title=FieldRule("h2 a, .title a, .offer-title"),
        price=FieldRule(".price, .offer-price", regex=r"([\d\s]+)"),
        location=FieldRule(".location, .offer-location"),
        link=FieldRule('a[href*="/oferta/"], h2 a, .title a', attribute="href"),
        image=FieldRule("img", attribute="src"),
        external_id=FieldRule("[data-id]", attribute="data-id"),
    ),
}

# Marketing names that do not normalize onto a rule key by themselves.
RULE_ALIASES: dict[str, str] = {
    "allegromotoryzacja": "allegro",
    "olxpl": "olx",
    "otomotopl": "otomoto",
}


def normalize_source_key(source_name: str) -> str:
    """'OLX.pl' → 'olx', 'Sprzedajemy.pl' → 'sprzedajemy'."""
    key = _TLD_SUFFIX.sub("", source_name.strip().lower())
    key = _NON_LETTERS.sub("", key)
    return RULE_ALIASES.get(key, key)


def get_rule(source_name: str) -> ExtractionRule | None:
    """Rule for ``source_name`` or None (logged) when the source is unknown."""
    key = normalize_source_key(source_name)
    rule = EXTRACTION_RULES.get(key)
    if rule is None:
        logger.warning("No extraction rule for source=%s (key=%s)", source_name, key)
    return rule
