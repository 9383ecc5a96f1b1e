"""
Phone Extractor — reveals a seller's phone number on a listing detail page.

Sites hide the number behind a "show phone" button, so extraction is a
short workflow (navigate, click, wait, extract) run by WorkflowRunner.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from workers.automation.extraction_rules import normalize_source_key
from workers.automation.workflow import (
    ActionType,
    Workflow,
    WorkflowFailed,
    WorkflowRunner,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

PHONE_RESULT_KEY = "phone"

_TEL_PREFIX = re.compile(r"^tel:", re.IGNORECASE)
_SEPARATORS = re.compile(r"[\s\-.]+")
_LOCAL_NUMBER = re.compile(r"^\d{9}$")
_COUNTRY_NUMBER = re.compile(r"^48\d{9}$")


@dataclass(frozen=True, slots=True)
class PhoneRule:
    reveal_button_selector: str
    phone_selector: str
    phone_attribute: str | None = "href"  # None = text content
    requires_login: bool = False


PHONE_RULES: dict[str, PhoneRule] = {
    "olx": PhoneRule(
        reveal_button_selector='button[data-testid="ad-contact-phone"]',
        phone_selector='a[data-testid="contact-phone"]',
    ),
    "otomoto": PhoneRule(
        reveal_button_selector='button[data-testid="show-phone"]',
        phone_selector='a[href^="tel:"]',
    ),
}


def parse_phone_number(raw_phone: str) -> str:
    """
    Normalize a phone read from a tel: link or text.

    'tel:123456789' → '+48123456789'; 'tel:+48 123-456-789' → '+48123456789'.
    """
    phone = _TEL_PREFIX.sub("", raw_phone.strip())
    phone = _SEPARATORS.sub("", phone)
    if _LOCAL_NUMBER.match(phone):
        return "+48" + phone
    if _COUNTRY_NUMBER.match(phone):
        return "+" + phone
    return phone


def supports_phone_extraction(source_name: str) -> bool:
    rule = PHONE_RULES.get(normalize_source_key(source_name))
    return rule is not None and not rule.requires_login


def build_phone_workflow(source_name: str) -> Workflow | None:
    """Reveal-phone workflow for ``source_name``; expects ``{{listing_url}}``."""
    rule = PHONE_RULES.get(normalize_source_key(source_name))
    if rule is None or rule.requires_login:
        return None
    return Workflow(
        name=f"reveal-phone:{normalize_source_key(source_name)}",
        steps=(
            WorkflowStep(1, ActionType.NAVIGATE, parameters={"url": "{{listing_url}}"}),
            WorkflowStep(
                2,
                ActionType.CLICK,
                css_selector=rule.reveal_button_selector,
                error_recovery={"dismiss_popup": True, "scroll_and_retry": True},
            ),
            WorkflowStep(3, ActionType.WAIT, css_selector=rule.phone_selector),
            WorkflowStep(
                4,
                ActionType.EXTRACT,
                css_selector=rule.phone_selector,
                parameters={"key": PHONE_RESULT_KEY},
            ),
        ),
    )


async def extract_phone(runner: WorkflowRunner, source_name: str, listing_url: str) -> str | None:
    """Run the reveal workflow; None when the source or page has no phone."""
    workflow = build_phone_workflow(source_name)
    if workflow is None:
        logger.debug("No phone extractor for source: %s", source_name)
        return None

    try:
        result = await runner.run(workflow, {"listing_url": listing_url})
    except WorkflowFailed as exc:
        logger.debug("Phone reveal failed for %s at step %d: %s", listing_url, exc.step_order, exc.error)
        return None

    rule = PHONE_RULES[normalize_source_key(source_name)]
    raw = _first_value(result.results.get(PHONE_RESULT_KEY), rule.phone_attribute)
    if not raw:
        return None
    phone = parse_phone_number(raw)
    logger.info("Extracted phone %s from %s", phone, listing_url)
    return phone


def _first_value(extracted: Any, attribute: str | None) -> str | None:
    for item in extracted or []:
        value = item.get(attribute) if attribute else item.get("text")
        if value and value.strip():
            return value
    return None
