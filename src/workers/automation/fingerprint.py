"""Randomized browser fingerprints for new pool sessions."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any

USER_AGENTS = [
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.4 Safari/605.1.15"
    ),
    (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
]

VIEWPORTS = [(1280, 720), (1366, 768), (1440, 900), (1536, 864), (1920, 1080)]

# (locale, timezone) pairs that look plausible for Polish marketplaces.
LOCALES = [
    ("pl-PL", "Europe/Warsaw"),
    ("pl-PL", "Europe/Warsaw"),
    ("en-GB", "Europe/Warsaw"),
    ("de-DE", "Europe/Berlin"),
    ("cs-CZ", "Europe/Prague"),
]


@dataclass(frozen=True, slots=True)
class BrowserFingerprint:
    user_agent: str
    viewport_width: int
    viewport_height: int
    locale: str
    timezone_id: str

    def to_context_options(self) -> dict[str, Any]:
        """Keyword arguments for ``Browser.new_context``."""
        return {
            "user_agent": self.user_agent,
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "locale": self.locale,
            "timezone_id": self.timezone_id,
        }


def random_fingerprint(rng: random.Random | None = None) -> BrowserFingerprint:
    rng = rng or random
    width, height = rng.choice(VIEWPORTS)
    locale, timezone_id = rng.choice(LOCALES)
    return BrowserFingerprint(
        user_agent=rng.choice(USER_AGENTS),
        viewport_width=width,
        viewport_height=height,
        locale=locale,
        timezone_id=timezone_id,
    )
