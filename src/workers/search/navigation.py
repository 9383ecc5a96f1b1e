"""
Page chores done before extraction: cookie banners and lazy-loaded cards.

Neither step is allowed to fail a search; a banner we cannot close just
stays on screen while the cards are read from the DOM.
"""

from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from workers.search.timing import random_delay

logger = logging.getLogger(__name__)

CONSENT_SELECTORS = (
    "#onetrust-accept-btn-handler",
    'button[data-testid="accept-cookies-button"]',
    'button[data-cy="accept-cookies"]',
    '[data-role="accept-consent"]',
    'button[data-testid="consent-accept"]',
)

# Clicks the first visible button whose label reads like "accept".
CONSENT_TEXT_JS = """
() => {
    const pattern = /akceptuj|zaakceptuj|accept|zgadzam|agree/i;
    for (const button of document.querySelectorAll('button, [role="button"]')) {
        if (button.offsetParent !== null && pattern.test(button.textContent || '')) {
            button.click();
            return true;
        }
    }
    return false;
}
"""

DEFAULT_SCROLL_PX = 500


async def dismiss_cookie_consent(page: Page) -> bool:
    """Close a cookie-consent banner if one is shown. Returns True if clicked."""
    for selector in CONSENT_SELECTORS:
        try:
            button = await page.query_selector(selector)
            if button is not None and await button.is_visible():
                await button.click()
                logger.debug("Dismissed cookie consent via %s", selector)
                await random_delay(0.5, 1.0)
                return True
        except PlaywrightError as exc:
            logger.debug("Consent selector %s not clickable: %s", selector, exc)

    try:
        clicked = bool(await page.evaluate(CONSENT_TEXT_JS))
    except PlaywrightError as exc:
        logger.debug("Consent text search failed: %s", exc)
        return False
    if clicked:
        logger.debug("Dismissed cookie consent via text search")
        await random_delay(0.5, 1.0)
    return clicked


async def scroll_for_lazy_content(page: Page, amount: int = DEFAULT_SCROLL_PX) -> None:
    """Scroll down once so lazily rendered listing cards get attached."""
    try:
        await page.evaluate("(amount) => window.scrollBy(0, amount)", amount)
    except PlaywrightError as exc:
        logger.debug("Scroll failed on %s: %s", page.url, exc)
