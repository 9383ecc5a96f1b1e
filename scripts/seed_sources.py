"""
Seed script — Populates the marketplaces we know how to search.

Existing rows (matched by name) are left untouched.

Run:  PYTHONPATH=src python scripts/seed_sources.py
"""

from __future__ import annotations

import asyncio

from sqlalchemy import select

from core.database import async_session_factory
from core.models import Source


SOURCES = [
    {"name": "OLX.pl",              "base_url": "https://www.olx.pl",                                     "is_active": True},
    {"name": "OTOMOTO",             "base_url": "https://www.otomoto.pl",                                 "is_active": True},
    {"name": "Allegro Motoryzacja", "base_url": "https://allegro.pl/kategoria/samochody-osobowe-4029",    "is_active": True},
    {"name": "Sprzedajemy.pl",      "base_url": "https://sprzedajemy.pl",                                 "is_active": True},
    {"name": "Autoplac.pl",         "base_url": "https://www.autoplac.pl",                                "is_active": True},
    # Requires a logged-in session; no extraction rules yet.
    {"name": "Facebook Marketplace", "base_url": "https://www.facebook.com/marketplace",                  "is_active": False},
]


async def seed() -> None:
    async with async_session_factory() as session:
        for data in SOURCES:
            existing = await session.scalar(select(Source).where(Source.name == data["name"]))
            if existing:
                print(f"  ⏭️  {data['name']} already exists (ID: {existing.id})")
                continue
            session.add(Source(**data))
            print(f"  ➕ {data['name']} ({data['base_url']})")
        await session.commit()
    print("✅ Sources seeded")


if __name__ == "__main__":
    asyncio.run(seed())
