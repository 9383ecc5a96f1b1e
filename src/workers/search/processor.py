"""
Search Processor — ARQ job
==========================
Runs one SearchJob end to end:
1. Borrow a browser session from the pool
2. Open the source's search URL, clear the cookie banner, scroll
3. Extract listing cards with the source's rules
4. Reconcile against stored listings (insert new, lower prices)
5. Stamp the query's run times and commit
6. Hand change events to the notification boundary
7. Optionally reveal seller phones for the new listings, within a time budget

The whole run is bounded by the job timeout. Failures are retried by arq with
exponential backoff; the last failure is dead-lettered and reported to
operators on Slack.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from arq import Retry
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.hashing import primary_hash, semantic_hash
from core.models import Listing, MonitoredQuery
from core.notifications.dispatcher import NotificationDispatcher
from core.notifications.events import ChangeEvent, ChangeType, new_listing_event, price_drop_event
from core.notifications.slack import dead_letter_blocks, send_slack_alert
from workers.automation.browser_pool import BrowserSessionPool
from workers.automation.listing_extractor import extract_listings
from workers.automation.models import ExtractedListing
from workers.automation.phone_extractor import extract_phone, supports_phone_extraction
from workers.automation.workflow import WorkflowFailed, WorkflowRunner, load_workflow
from workers.search.models import SearchJob
from workers.search.navigation import dismiss_cookie_consent, scroll_for_lazy_content
from workers.search.timing import compute_next_run, random_delay
from workers.search.url_builder import build_search_url

logger = logging.getLogger(__name__)


@dataclass
class ReconcileOutcome:
    new_listing_ids: list[int] = field(default_factory=list)
    events: list[ChangeEvent] = field(default_factory=list)

    @property
    def price_drops(self) -> int:
        return sum(1 for event in self.events if event.type is ChangeType.PRICE_DROP)


# ── Reconciliation ────────────────────────────────────────────────────

async def reconcile_listings(
    session: AsyncSession,
    job: SearchJob,
    records: Iterable[ExtractedListing],
) -> ReconcileOutcome:
    """
    Merge extracted records into the listing table. Does not commit.

    Known listing (same primary hash): only a strictly lower price is
    applied, the old one moves to ``previous_price``. Unknown listing:
    inserted inside a savepoint; losing an insert race to another job falls
    back to the known-listing path.
    """
    outcome = ReconcileOutcome()
    for record in records:
        p_hash = primary_hash(job.source_id, record.external_id)
        existing = await _find_listing(session, p_hash)
        if existing is not None:
            _apply_price_change(existing, record, job, outcome)
            continue

        listing = Listing(
            source_id=job.source_id,
            monitored_query_id=job.query_id,
            external_id=record.external_id,
            title=record.title,
            description=record.description,
            price=record.price,
            currency=record.currency,
            location=record.location,
            phone=record.phone,
            listing_url=record.listing_url,
            images=list(record.images),
            primary_hash=p_hash,
            semantic_hash=semantic_hash(record.title, record.price, record.phone),
        )
        try:
            async with session.begin_nested():
                session.add(listing)
        except IntegrityError:
            logger.info("Listing %s inserted concurrently, updating instead", record.external_id)
            existing = await _find_listing(session, p_hash)
            if existing is not None:
                _apply_price_change(existing, record, job, outcome)
            continue

        outcome.new_listing_ids.append(listing.id)
        outcome.events.append(
            new_listing_event(
                user_id=job.user_id,
                listing_id=listing.id,
                title=listing.title,
                price=listing.price,
                currency=listing.currency,
                listing_url=listing.listing_url,
            )
        )
        logger.info("New listing #%d: %s", listing.id, listing.title)

    return outcome


async def _find_listing(session: AsyncSession, p_hash: str) -> Listing | None:
    return await session.scalar(select(Listing).where(Listing.primary_hash == p_hash))


def _apply_price_change(
    listing: Listing, record: ExtractedListing, job: SearchJob, outcome: ReconcileOutcome
) -> None:
    if listing.price is None or record.price is None or record.price >= listing.price:
        return
    old_price = listing.price
    listing.previous_price = old_price
    listing.price = record.price
    listing.semantic_hash = semantic_hash(listing.title, record.price, listing.phone)
    outcome.events.append(
        price_drop_event(
            user_id=job.user_id,
            listing_id=listing.id,
            title=listing.title,
            old_price=old_price,
            new_price=record.price,
            currency=listing.currency,
            listing_url=listing.listing_url,
        )
    )
    logger.info("Price drop on listing #%d: %s → %s", listing.id, old_price, record.price)


# ── Search run ────────────────────────────────────────────────────────

async def process_search(
    job: SearchJob,
    *,
    pool: BrowserSessionPool,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: NotificationDispatcher,
) -> dict[str, int]:
    """Scrape, reconcile and notify for one job. Errors propagate to arq."""
    browser_session = await pool.acquire()
    try:
        page = browser_session.page
        url = build_search_url(job)
        logger.info("Searching %s for query %d: %s", job.source_name, job.query_id, url)

        await page.goto(url, wait_until="domcontentloaded", timeout=settings.navigation_timeout_ms)
        await random_delay(2, 4)
        await dismiss_cookie_consent(page)
        await scroll_for_lazy_content(page)
        await random_delay(1, 2)

        records = list(await extract_listings(page, job.source_name))

        async with session_factory() as session:
            outcome = await reconcile_listings(session, job, records)

            now = datetime.now(timezone.utc)
            query = await session.get(MonitoredQuery, job.query_id)
            if query is not None:
                query.last_run_at = now
                if not job.manual:
                    query.next_run_at = compute_next_run(
                        now, query.interval_seconds, query.jitter_seconds
                    )
            await session.commit()

        for event in outcome.events:
            notifier.dispatch(event)

        phones = 0
        if (
            outcome.new_listing_ids
            and settings.extract_phone_numbers
            and supports_phone_extraction(job.source_name)
        ):
            phones = await enrich_phones(
                session_factory,
                WorkflowRunner.for_page(page),
                job.source_name,
                outcome.new_listing_ids,
            )
    finally:
        await pool.release(browser_session)

    summary = {
        "new_listings": len(outcome.new_listing_ids),
        "price_drops": outcome.price_drops,
        "extracted": len(records),
        "phones": phones,
    }
    logger.info("Query %d done: %s", job.query_id, summary)
    return summary


async def enrich_phones(
    session_factory: async_sessionmaker[AsyncSession],
    runner: WorkflowRunner,
    source_name: str,
    listing_ids: Sequence[int],
    *,
    budget_seconds: float | None = None,
    max_listings: int | None = None,
) -> int:
    """
    Reveal seller phones for already-committed listings.

    At most ``max_listings`` listings are visited and the whole pass stops
    at ``budget_seconds``; whatever was not reached keeps ``phone`` unset.
    Each found phone is committed on its own. Returns how many were stored.
    """
    budget = settings.phone_enrichment_budget_seconds if budget_seconds is None else budget_seconds
    limit = settings.phone_enrichment_max_listings if max_listings is None else max_listings
    if limit <= 0 or not listing_ids:
        return 0

    async with session_factory() as session:
        result = await session.execute(
            select(Listing.id, Listing.listing_url)
            .where(Listing.id.in_(listing_ids), Listing.phone.is_(None))
            .order_by(Listing.id)
            .limit(limit)
        )
        targets = result.all()

    deadline = asyncio.get_running_loop().time() + budget
    stored = 0
    for listing_id, listing_url in targets:
        try:
            async with asyncio.timeout_at(deadline):
                phone = await extract_phone(runner, source_name, listing_url)
        except TimeoutError:
            logger.warning(
                "Phone enrichment budget of %.0fs spent after %d listings", budget, stored
            )
            break
        if not phone:
            continue

        async with session_factory() as session:
            listing = await session.get(Listing, listing_id)
            if listing is None:
                continue
            listing.phone = phone
            listing.semantic_hash = semantic_hash(listing.title, listing.price, phone)
            await session.commit()
        stored += 1

    return stored


# ── ARQ entry points ──────────────────────────────────────────────────

async def run_search_job(ctx: dict, payload: dict[str, Any]) -> dict[str, int]:
    """ARQ job: one search with retry/dead-letter handling."""
    job = SearchJob.from_payload(payload)
    job_try = ctx.get("job_try", 1)
    try:
        # Must expire before arq's job_timeout so the retry path still runs.
        async with asyncio.timeout(settings.job_timeout_seconds):
            return await process_search(
                job,
                pool=ctx["browser_pool"],
                session_factory=ctx["session_factory"],
                notifier=ctx["notifier"],
            )
    except Exception as exc:
        reason = str(exc) or type(exc).__name__
        if job_try < settings.job_max_tries:
            defer = settings.job_retry_base_seconds * 2 ** (job_try - 1)
            logger.warning(
                "Search for query %d failed (try %d/%d), retrying in %.0fs: %s",
                job.query_id, job_try, settings.job_max_tries, defer, reason,
            )
            raise Retry(defer=defer) from exc

        logger.error(
            "Search for query %d dead-lettered after %d tries: %s",
            job.query_id, job_try, reason,
        )
        await send_slack_alert(
            f"Search job for query {job.query_id} ({job.source_name}) dead-lettered: {reason}",
            blocks=dead_letter_blocks(job.query_id, job.source_name, job_try, reason),
        )
        raise


async def run_automation_workflow(
    ctx: dict, workflow_id: int, variables: dict[str, Any] | None = None
) -> dict[str, Any]:
    """ARQ job: run a stored AutomationWorkflow on a pooled browser session."""
    async with ctx["session_factory"]() as session:
        workflow = await load_workflow(session, workflow_id)
    if workflow is None:
        logger.warning("Workflow %d not found or inactive", workflow_id)
        return {"workflow_id": workflow_id, "state": "not_found"}

    pool: BrowserSessionPool = ctx["browser_pool"]
    browser_session = await pool.acquire()
    try:
        runner = WorkflowRunner.for_page(browser_session.page)
        try:
            result = await runner.run(workflow, variables)
        except WorkflowFailed as exc:
            result = exc.result
    finally:
        await pool.release(browser_session)

    return {
        "workflow_id": workflow_id,
        "workflow": result.workflow_name,
        "state": result.state.value,
        "failed_step": result.failed_step,
        "error": result.error,
        "results": result.results,
        "screenshots": len(result.screenshots),
        "logs": result.logs,
    }


async def evict_idle_browser_sessions(ctx: dict) -> int:
    """ARQ cron job: close browser sessions idle past the timeout."""
    return await ctx["browser_pool"].evict_idle()
