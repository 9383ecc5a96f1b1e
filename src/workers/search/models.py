"""Queue payload for a single scrape of a MonitoredQuery."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any

from core.models import MonitoredQuery


@dataclass(frozen=True, slots=True)
class SearchJob:
    """Snapshot of a MonitoredQuery (and its Source) taken at enqueue time."""

    query_id: int
    user_id: int
    source_id: int
    source_name: str
    source_base_url: str
    keywords: tuple[str, ...] = ()
    price_min: Decimal | None = None
    price_max: Decimal | None = None
    location: str | None = None
    interval_seconds: int = 300
    jitter_seconds: int | None = None
    source_parameters: dict[str, Any] = field(default_factory=dict)
    manual: bool = False

    @classmethod
    def from_query(cls, query: MonitoredQuery, *, manual: bool = False) -> SearchJob:
        """Build from a query whose ``source`` relationship is loaded."""
        return cls(
            query_id=query.id,
            user_id=query.user_id,
            source_id=query.source_id,
            source_name=query.source.name,
            source_base_url=query.source.base_url,
            keywords=tuple(query.keywords or ()),
            price_min=query.price_min,
            price_max=query.price_max,
            location=query.location,
            interval_seconds=query.interval_seconds,
            jitter_seconds=query.jitter_seconds,
            source_parameters=dict(query.source.default_parameters or {}),
            manual=manual,
        )

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["keywords"] = list(self.keywords)
        for key in ("price_min", "price_max"):
            if payload[key] is not None:
                payload[key] = str(payload[key])
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SearchJob:
        data = dict(payload)
        data["keywords"] = tuple(data.get("keywords") or ())
        for key in ("price_min", "price_max"):
            if data.get(key) is not None:
                data[key] = Decimal(str(data[key]))
        return cls(**data)
