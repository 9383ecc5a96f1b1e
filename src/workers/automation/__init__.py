"""Browser automation: session pool, extraction rules, workflows."""

from workers.automation.browser_pool import BrowserSession, BrowserSessionPool
from workers.automation.listing_extractor import extract_listings, iter_listings
from workers.automation.models import ExtractedListing, ExtractionError, PoolClosedError
from workers.automation.phone_extractor import extract_phone, supports_phone_extraction
from workers.automation.workflow import Workflow, WorkflowFailed, WorkflowRunner, load_workflow

__all__ = [
    "BrowserSession",
    "BrowserSessionPool",
    "ExtractedListing",
    "ExtractionError",
    "PoolClosedError",
    "Workflow",
    "WorkflowFailed",
    "WorkflowRunner",
    "extract_listings",
    "extract_phone",
    "iter_listings",
    "load_workflow",
    "supports_phone_extraction",
]
