"""
Browser Session Pool
====================
Bounded set of live Playwright sessions (browser process + context + page)
shared by the search jobs of one worker process.

- ``acquire`` reuses an idle session or launches a new one (randomized
  fingerprint) while under the cap; when saturated it sleeps a fixed
  interval and checks again.
- ``release`` wipes cookies/storage and parks the page on about:blank.
- ``evict_idle`` closes sessions unused for longer than the idle timeout.
- ``shutdown`` closes everything; idempotent.

Every mutation of the session list happens under one asyncio.Lock.
Browser launches happen outside the lock, but reserve their slot first so
the cap also holds while launches are in flight.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Playwright, async_playwright

from core.config import settings
from workers.automation.fingerprint import BrowserFingerprint, random_fingerprint
from workers.automation.models import PoolClosedError

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

CLEAR_STORAGE_JS = """
() => {
    try { window.localStorage.clear(); } catch (e) {}
    try { window.sessionStorage.clear(); } catch (e) {}
}
"""


@dataclass(eq=False)
class BrowserSession:
    """A pooled browser. ``page`` is the single tab jobs drive."""

    browser: Any
    context: Any
    page: Any
    fingerprint: BrowserFingerprint | None = None
    created_at: float = field(default_factory=time.monotonic)
    last_used_at: float = field(default_factory=time.monotonic)
    in_use: bool = False

    async def close(self) -> None:
        """Close context then process; errors from dead processes are ignored."""
        for target in (self.context, self.browser):
            try:
                await target.close()
            except Exception as exc:
                logger.debug("Ignoring error while closing browser session: %s", exc)


SessionLauncher = Callable[[BrowserFingerprint], Awaitable[BrowserSession]]


class BrowserSessionPool:
    """Owns every browser the worker process launches."""

    def __init__(
        self,
        *,
        max_size: int | None = None,
        idle_timeout: float | None = None,
        retry_interval: float | None = None,
        headless: bool | None = None,
        default_timeout_ms: int | None = None,
        launcher: SessionLauncher | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_size = max_size or settings.browser_pool_size
        self.idle_timeout = idle_timeout or settings.browser_session_idle_seconds
        self.retry_interval = retry_interval or settings.browser_pool_retry_seconds
        self.headless = settings.playwright_headless if headless is None else headless
        self.default_timeout_ms = default_timeout_ms or settings.navigation_timeout_ms
        self._launcher = launcher or self._launch_session
        self._clock = clock

        self._sessions: list[BrowserSession] = []
        self._launching = 0
        self._closed = False
        self._lock = asyncio.Lock()
        self._driver_lock = asyncio.Lock()
        self._playwright: Playwright | None = None

    # ── Introspection ─────────────────────────────────────────────────

    @property
    def size(self) -> int:
        """Live sessions, including those being launched."""
        return len(self._sessions) + self._launching

    @property
    def in_use(self) -> int:
        return sum(1 for s in self._sessions if s.in_use)

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Public API ────────────────────────────────────────────────────

    async def acquire(self) -> BrowserSession:
        """Reserve a session, launching or waiting as needed."""
        while True:
            if self._closed:
                raise PoolClosedError("Browser pool is shut down")

            reused: BrowserSession | None = None
            launch = False
            async with self._lock:
                stale = self._pop_idle_expired()
                reused = next((s for s in self._sessions if not s.in_use), None)
                if reused is not None:
                    reused.in_use = True
                    reused.last_used_at = self._clock()
                elif self.size < self.max_size:
                    self._launching += 1
                    launch = True
            await self._close_sessions(stale)

            if reused is not None:
                logger.debug("Reusing browser session (pool size: %d)", self.size)
                return reused
            if launch:
                return await self._launch_reserved()

            logger.warning(
                "Browser pool exhausted (%d/%d in use), retrying in %.1fs",
                self.in_use, self.max_size, self.retry_interval,
            )
            await asyncio.sleep(self.retry_interval)

    async def release(self, session: BrowserSession) -> None:
        """Reset ``session`` and hand it back to the pool."""
        try:
            await session.context.clear_cookies()
            await session.page.evaluate(CLEAR_STORAGE_JS)
            await session.page.goto("about:blank")
        except Exception as exc:
            logger.error("Failed to clear browser session state: %s", exc)

        async with self._lock:
            session.in_use = False
            session.last_used_at = self._clock()
            orphaned = session not in self._sessions
        if orphaned:
            # Evicted or shut down while the job was running.
            await session.close()

    async def evict_idle(self) -> int:
        """Close sessions idle beyond the timeout. Returns how many were closed."""
        async with self._lock:
            stale = self._pop_idle_expired()
        await self._close_sessions(stale)
        return len(stale)

    async def shutdown(self) -> None:
        """Close every session and stop the Playwright driver."""
        self._closed = True
        async with self._lock:
            sessions, self._sessions = self._sessions, []
        if sessions:
            logger.info("Shutting down browser pool (%d sessions)...", len(sessions))
        await self._close_sessions(sessions)

        async with self._driver_lock:
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as exc:
                    logger.debug("Ignoring error while stopping Playwright: %s", exc)
                self._playwright = None
        logger.info("Browser pool shutdown complete")

    # ── Internals ─────────────────────────────────────────────────────

    def _pop_idle_expired(self) -> list[BrowserSession]:
        """Remove idle-expired sessions from the list. Caller holds the lock."""
        now = self._clock()
        stale = [
            s for s in self._sessions
            if not s.in_use and now - s.last_used_at > self.idle_timeout
        ]
        if stale:
            self._sessions = [s for s in self._sessions if s not in stale]
            logger.debug("Evicting %d idle browser session(s)", len(stale))
        return stale

    async def _close_sessions(self, sessions: list[BrowserSession]) -> None:
        for session in sessions:
            await session.close()

    async def _launch_reserved(self) -> BrowserSession:
        """Launch into a slot already counted in ``_launching``."""
        try:
            session = await self._launcher(random_fingerprint())
        except BaseException:
            async with self._lock:
                self._launching -= 1
            raise

        async with self._lock:
            self._launching -= 1
            if not self._closed:
                now = self._clock()
                session.in_use = True
                session.created_at = now
                session.last_used_at = now
                self._sessions.append(session)
                logger.info("Created new browser session (pool size: %d)", self.size)
                return session

        await session.close()
        raise PoolClosedError("Browser pool shut down during launch")

    async def _launch_session(self, fingerprint: BrowserFingerprint) -> BrowserSession:
        """Default launcher: one Chromium process per session."""
        async with self._driver_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            playwright = self._playwright

        browser = await playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
        try:
            context = await browser.new_context(**fingerprint.to_context_options())
            page = await context.new_page()
        except Exception:
            await browser.close()
            raise
        page.set_default_timeout(self.default_timeout_ms)
        return BrowserSession(browser=browser, context=context, page=page, fingerprint=fingerprint)
