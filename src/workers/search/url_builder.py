"""
Search URL construction, one query-string dialect per marketplace.

Unknown sources fall back to the generic ``q`` / ``price_from`` /
``price_to`` / ``city`` parameters on the source's base URL.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from core.hashing import price_text
from workers.automation.extraction_rules import normalize_source_key
from workers.search.models import SearchJob

_MULTI_SLASH = re.compile(r"/{2,}")
_SLUG_UNSAFE = re.compile(r"[^\w]+", re.UNICODE)
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True, slots=True)
class SearchDialect:
    """
    How a marketplace encodes a search.

    ``path`` is appended to the base URL path and may contain
    ``{keywords}`` and ``{location}`` placeholders (slugified); empty path
    segments collapse. A ``None`` parameter name means the value is not
    sent as a query parameter.
    """

    path: str = ""
    keyword_param: str | None = "q"
    keyword_separator: str = " "
    price_from_param: str | None = "price_from"
    price_to_param: str | None = "price_to"
    location_param: str | None = "city"
    location_fallback: str = ""
    fixed_params: Mapping[str, str] = field(default_factory=dict)


GENERIC_DIALECT = SearchDialect()

SEARCH_DIALECTS: dict[str, SearchDialect] = {
    "olx": SearchDialect(
        path="/{location}/q-{keywords}/",
        keyword_param=None,
        keyword_separator="-",
        price_from_param="search[filter_float_price:from]",
        price_to_param="search[filter_float_price:to]",
        location_param=None,
        location_fallback="oferty",
    ),
    "otomoto": SearchDialect(
        path="/osobowe/{location}/q-{keywords}",
        keyword_param=None,
        keyword_separator="-",
        price_from_param="search[filter_float_price:from]",
        price_to_param="search[filter_float_price:to]",
        location_param=None,
    ),
    "allegro": SearchDialect(
        keyword_param="string",
        location_param="city",
    ),
    "sprzedajemy": SearchDialect(
        path="/szukaj",
        keyword_param="inp_text[v]",
        price_from_param="inp_price[from]",
        price_to_param="inp_price[to]",
        location_param="inp_location[v]",
    ),
}


def build_search_url(job: SearchJob) -> str:
    """Search URL for ``job`` in its source's dialect."""
    dialect = SEARCH_DIALECTS.get(normalize_source_key(job.source_name), GENERIC_DIALECT)
    base = urlsplit(job.source_base_url)

    keywords = [k.strip() for k in job.keywords if k and k.strip()]
    path = base.path.rstrip("/")
    if dialect.path:
        rendered = _render_path(
            dialect.path,
            keywords=_slug(keywords, dialect.keyword_separator),
            location=_slug([job.location] if job.location else [], "-") or dialect.location_fallback,
        )
        path = _MULTI_SLASH.sub("/", path + rendered)

    params: list[tuple[str, str]] = parse_qsl(base.query, keep_blank_values=True)
    params.extend((str(k), str(v)) for k, v in job.source_parameters.items())
    params.extend(dialect.fixed_params.items())

    if dialect.keyword_param and keywords:
        params.append((dialect.keyword_param, dialect.keyword_separator.join(keywords)))
    if dialect.price_from_param and job.price_min is not None:
        params.append((dialect.price_from_param, _number(job.price_min)))
    if dialect.price_to_param and job.price_max is not None:
        params.append((dialect.price_to_param, _number(job.price_max)))
    if dialect.location_param and job.location:
        params.append((dialect.location_param, job.location))

    return urlunsplit((base.scheme, base.netloc, path or "/", urlencode(params), ""))


def _render_path(template: str, **values: str) -> str:
    """Format ``template``, dropping segments whose placeholder is empty."""
    segments = []
    for segment in template.strip("/").split("/"):
        names = _PLACEHOLDER.findall(segment)
        if not segment or any(not values.get(name) for name in names):
            continue
        segments.append(segment.format(**values))
    rendered = "/" + "/".join(segments)
    if template.endswith("/") and segments:
        rendered += "/"
    return rendered


def _slug(words: list[str], separator: str) -> str:
    parts: list[str] = []
    for word in words:
        parts.extend(p for p in _SLUG_UNSAFE.split(word.lower()) if p)
    return quote(separator.join(parts), safe="-")


def _number(value: Decimal | Any) -> str:
    return price_text(value)
