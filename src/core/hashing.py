"""
Listing fingerprints used for deduplication.

- primary hash: identity of a listing (source + id assigned by the site).
  Backed by a unique constraint, so insert-if-absent stays idempotent when
  the same listing is ingested by concurrent or retried jobs.
- semantic hash: content fingerprint (title, price, phone). Stored for
  every listing; a candidate signal for cross-source duplicates.

Both are unsalted so they survive process restarts.
"""

from __future__ import annotations

import hashlib
import re
from decimal import Decimal, InvalidOperation

_NON_DIGITS = re.compile(r"\D")


def primary_hash(source_id: int | str, external_id: str) -> str:
    """32-char hex digest of ``"{source_id}:{external_id}"``."""
    return hashlib.md5(f"{source_id}:{external_id}".encode("utf-8")).hexdigest()


def semantic_hash(title: str, price: Decimal | float | int | None, phone: str | None) -> str:
    """64-char hex digest of the normalized ``title|price|phone`` triple."""
    normalized = "|".join(
        [
            title.strip().lower(),
            price_text(price),
            _NON_DIGITS.sub("", phone) if phone else "",
        ]
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def price_text(price: Decimal | float | int | None) -> str:
    """Canonical decimal string: 45000, 45000.0 and 45000.00 all give '45000'."""
    if price is None:
        return ""
    try:
        value = Decimal(str(price))
    except InvalidOperation:
        return ""
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value.normalize(), "f")
