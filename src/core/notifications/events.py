"""Change events produced by listing reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any

from core.hashing import price_text


class ChangeType(StrEnum):
    NEW_LISTING = "new_listing"
    PRICE_DROP = "price_drop"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Everything a notification collaborator needs to tell the user."""

    type: ChangeType
    user_id: int
    listing_id: int
    title: str
    body: str
    listing_url: str | None = None
    price: Decimal | None = None
    previous_price: Decimal | None = None
    currency: str = "PLN"
    data: dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Wire format: ``{userId, listingId, type, title, body, data}``."""
        data = {"listingUrl": self.listing_url or "", **self.data}
        if self.price is not None:
            data["price"] = price_text(self.price)
        if self.previous_price is not None:
            data["previousPrice"] = price_text(self.previous_price)
        return {
            "userId": self.user_id,
            "listingId": self.listing_id,
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "data": data,
        }


def new_listing_event(
    *,
    user_id: int,
    listing_id: int,
    title: str,
    price: Decimal | None,
    currency: str,
    listing_url: str,
) -> ChangeEvent:
    shown = f"{price_text(price)} {currency}" if price is not None else "no price"
    return ChangeEvent(
        type=ChangeType.NEW_LISTING,
        user_id=user_id,
        listing_id=listing_id,
        title="New listing",
        body=f"{title} - {shown}",
        listing_url=listing_url,
        price=price,
        currency=currency,
    )


def price_drop_event(
    *,
    user_id: int,
    listing_id: int,
    title: str,
    old_price: Decimal,
    new_price: Decimal,
    currency: str,
    listing_url: str,
) -> ChangeEvent:
    return ChangeEvent(
        type=ChangeType.PRICE_DROP,
        user_id=user_id,
        listing_id=listing_id,
        title=f"Price drop: {title}",
        body=f"{price_text(old_price)} → {price_text(new_price)} {currency}",
        listing_url=listing_url,
        price=new_price,
        previous_price=old_price,
        currency=currency,
    )
