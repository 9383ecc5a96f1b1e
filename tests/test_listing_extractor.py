"""Extraction rules applied to saved search-result HTML."""

from __future__ import annotations

from decimal import Decimal

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from conftest import fake_page
from workers.automation.extraction_rules import EXTRACTION_RULES, get_rule, normalize_source_key
from workers.automation.listing_extractor import (
    MAX_LISTINGS_PER_PAGE,
    extract_listings,
    iter_listings,
    parse_price,
    resolve_url,
)
from workers.automation.models import ExtractionError

PAGE_URL = "https://www.olx.pl/oferty/q-audi-a4/"


def olx_card(title="Audi A4", price="45 000 zł", href="/d/oferta/abc123", location="Kraków"):
    title_html = f"<h6>{title}</h6>" if title is not None else ""
    link_html = f'<a href="{href}">{title_html}</a>' if href is not None else title_html
    return f"""
    <div data-cy="l-card">
      {link_html}
      <p data-testid="ad-price">{price}</p>
      <p data-testid="location-date">{location} - Dzisiaj o 10:00</p>
      <img src="https://img.olx.pl/1.jpg">
    </div>
    """


def olx_page(*cards):
    return "<html><body>" + "".join(cards) + "</body></html>"


def test_olx_card_is_extracted():
    listings = list(iter_listings(olx_page(olx_card()), PAGE_URL, EXTRACTION_RULES["olx"]))

    assert len(listings) == 1
    listing = listings[0]
    assert listing.title == "Audi A4"
    assert listing.price == Decimal("45000")
    assert listing.external_id == "abc123"
    assert listing.listing_url == "https://www.olx.pl/d/oferta/abc123"
    assert listing.currency == "PLN"
    assert listing.location.startswith("Kraków")
    assert listing.images == ["https://img.olx.pl/1.jpg"]


def test_cards_without_title_or_link_are_dropped():
    html = olx_page(
        olx_card(title=None, href="/d/oferta/no-title"),
        olx_card(title="No link", href=None),
        olx_card(title="Kept", href="/d/oferta/kept"),
    )
    listings = list(iter_listings(html, PAGE_URL, EXTRACTION_RULES["olx"]))
    assert [listing.external_id for listing in listings] == ["kept"]


def test_unparseable_price_becomes_none():
    html = olx_page(olx_card(price="Zamienię"))
    (listing,) = iter_listings(html, PAGE_URL, EXTRACTION_RULES["olx"])
    assert listing.price is None


def test_external_id_from_alternate_offer_path():
    html = olx_page(olx_card(href="https://www.otomoto.pl/osobowe/oferta/audi-a4-ID6Fxyz.html"))
    (listing,) = iter_listings(html, PAGE_URL, EXTRACTION_RULES["olx"])
    assert listing.external_id == "audi-a4-ID6Fxyz.html"


def test_external_id_falls_back_to_last_path_segment():
    html = olx_page(olx_card(href="/listing/999/"))
    (listing,) = iter_listings(html, PAGE_URL, EXTRACTION_RULES["olx"])
    assert listing.external_id == "999"


def test_otomoto_reads_id_from_card_attribute():
    html = """
    <article data-id="6123">
      <h2><a href="https://www.otomoto.pl/osobowe/oferta/bmw-x5">BMW X5</a></h2>
      <span data-testid="listing-price">129 900</span>
    </article>
    """
    (listing,) = iter_listings(html, "https://www.otomoto.pl/osobowe", EXTRACTION_RULES["otomoto"])
    assert listing.external_id == "6123"
    assert listing.price == Decimal("129900")


def test_extraction_is_capped():
    cards = [olx_card(title=f"Car {i}", href=f"/d/oferta/id{i}") for i in range(MAX_LISTINGS_PER_PAGE + 10)]
    listings = list(iter_listings(olx_page(*cards), PAGE_URL, EXTRACTION_RULES["olx"]))
    assert len(listings) == MAX_LISTINGS_PER_PAGE


@pytest.mark.parametrize(
    "name, key",
    [
        ("OLX.pl", "olx"),
        ("OTOMOTO", "otomoto"),
        ("Allegro Motoryzacja", "allegro"),
        ("Sprzedajemy.pl", "sprzedajemy"),
        ("Autoplac.pl", "autoplac"),
    ],
)
def test_source_names_resolve_to_rules(name, key):
    assert normalize_source_key(name) == key
    assert get_rule(name) is EXTRACTION_RULES[key]


def test_unknown_source_has_no_rule(caplog):
    assert get_rule("Facebook Marketplace") is None
    assert "No extraction rule" in caplog.text


@pytest.mark.parametrize(
    "text, expected",
    [
        ("45 000", Decimal("45000")),
        ("12 999,99", Decimal("12999.99")),
        (" 129 900 ", Decimal("129900")),
        ("", None),
        (None, None),
        ("abc", None),
    ],
)
def test_parse_price(text, expected):
    assert parse_price(text) == expected


def test_resolve_url_rejects_non_http():
    assert resolve_url("javascript:void(0)", PAGE_URL) is None
    assert resolve_url("   ", PAGE_URL) is None
    assert resolve_url("/d/oferta/x", PAGE_URL) == "https://www.olx.pl/d/oferta/x"


@pytest.mark.asyncio
async def test_extract_listings_from_page():
    page = fake_page(olx_page(olx_card()), url=PAGE_URL)
    listings = list(await extract_listings(page, "OLX.pl"))
    assert [listing.external_id for listing in listings] == ["abc123"]
    page.wait_for_selector.assert_awaited_once()


@pytest.mark.asyncio
async def test_extract_listings_unknown_source_is_empty():
    page = fake_page()
    assert list(await extract_listings(page, "Facebook Marketplace")) == []
    page.wait_for_selector.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_cards_rendered_raises_extraction_error():
    page = fake_page()
    page.wait_for_selector.side_effect = PlaywrightTimeoutError("Timeout 10000ms exceeded")
    with pytest.raises(ExtractionError):
        await extract_listings(page, "OLX.pl", timeout_ms=10)
