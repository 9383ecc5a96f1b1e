"""
Workflow Runner
===============
Interpreter for data-defined browser workflows: an ordered list of steps
(navigate, click, fill, wait, scroll, extract, screenshot) run on a single
page.

Each step goes through a small state machine::

    ATTEMPTING(n) ──ok──────────────────────────────▶ SUCCEEDED
        │
        └─error─▶ RECOVERING(n) ──recover+backoff──▶ ATTEMPTING(n+1)
                   (n == max_attempts) ─────────────▶ FAILED

The run itself is RUNNING → COMPLETED, or RUNNING → FAILED on the first
step that exhausts its attempts; later steps never execute.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.models import AutomationWorkflow

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0

NAVIGATE_TIMEOUT_MS = 30_000
CLICK_TIMEOUT_MS = 10_000
WAIT_TIMEOUT_MS = 15_000
DEFAULT_SCROLL_PX = 500

DISMISS_POPUP_SELECTOR = '[class*="close"], [class*="dismiss"], button:has-text("OK")'


class ActionType(StrEnum):
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    WAIT = "wait"
    SCROLL = "scroll"
    EXTRACT = "extract"
    SCREENSHOT = "screenshot"


@dataclass(frozen=True, slots=True)
class WorkflowStep:
    step_order: int
    action: ActionType
    css_selector: str | None = None
    xpath_selector: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    # {"scroll_and_retry": bool, "dismiss_popup": bool}
    error_recovery: Mapping[str, Any] = field(default_factory=dict)

    @property
    def selector(self) -> str | None:
        if self.css_selector:
            return self.css_selector
        if self.xpath_selector:
            return f"xpath={self.xpath_selector}"
        return None


@dataclass(frozen=True, slots=True)
class Workflow:
    name: str
    steps: tuple[WorkflowStep, ...]
    id: int | None = None
    source_id: int | None = None
    version: int = 1

    def ordered_steps(self) -> list[WorkflowStep]:
        return sorted(self.steps, key=lambda step: step.step_order)


# ── Variable interpolation ────────────────────────────────────────────

_VARIABLE = re.compile(r"\{\{(\w+)\}\}")


def interpolate(template: str, variables: Mapping[str, Any]) -> str:
    """Replace ``{{name}}`` tokens; unknown or None values become ''."""

    def _lookup(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return _VARIABLE.sub(_lookup, template)


def interpolate_parameters(
    parameters: Mapping[str, Any], variables: Mapping[str, Any]
) -> dict[str, Any]:
    """Interpolate every string value of a step's parameter bag."""
    return {
        key: interpolate(value, variables) if isinstance(value, str) else value
        for key, value in parameters.items()
    }


# ── Step state machine ────────────────────────────────────────────────

class StepState(StrEnum):
    ATTEMPTING = "attempting"
    RECOVERING = "recovering"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StepProgress:
    state: StepState = StepState.ATTEMPTING
    attempt: int = 1
    error: BaseException | None = None


def step_succeeded(progress: StepProgress) -> StepProgress:
    return replace(progress, state=StepState.SUCCEEDED, error=None)


def step_errored(progress: StepProgress, error: BaseException, max_attempts: int) -> StepProgress:
    if progress.attempt >= max_attempts:
        return replace(progress, state=StepState.FAILED, error=error)
    return replace(progress, state=StepState.RECOVERING, error=error)


def step_recovered(progress: StepProgress) -> StepProgress:
    return replace(progress, state=StepState.ATTEMPTING, attempt=progress.attempt + 1)


# ── Run result ────────────────────────────────────────────────────────

class RunState(StrEnum):
    RUNNING = "running"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass
class WorkflowResult:
    workflow_name: str
    state: RunState = RunState.RUNNING
    current_step: int | None = None
    failed_step: int | None = None
    error: str | None = None
    results: dict[str, Any] = field(default_factory=dict)
    screenshots: list[str] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)

    def log(self, message: str) -> None:
        stamp = datetime.now(timezone.utc).isoformat()
        self.logs.append(f"[{stamp}] {message}")
        logger.debug(message)


class WorkflowFailed(Exception):
    """Terminal failure of a workflow; carries the offending step."""

    def __init__(self, step_order: int, error: BaseException, result: WorkflowResult) -> None:
        super().__init__(f"Workflow failed at step {step_order}: {error}")
        self.step_order = step_order
        self.error = error
        self.result = result


# ── Executors ─────────────────────────────────────────────────────────

class StepExecutor(Protocol):
    async def execute(
        self, step: WorkflowStep, params: dict[str, Any], result: WorkflowResult
    ) -> None: ...

    async def recover(self, step: WorkflowStep) -> None: ...

    async def screenshot(self) -> str: ...


class PageStepExecutor:
    """Runs workflow steps against a Playwright page."""

    def __init__(self, page: Any) -> None:
        self.page = page

    async def execute(
        self, step: WorkflowStep, params: dict[str, Any], result: WorkflowResult
    ) -> None:
        page = self.page
        selector = step.selector

        if step.action is ActionType.NAVIGATE:
            await page.goto(
                params["url"],
                wait_until="domcontentloaded",
                timeout=params.get("timeout") or NAVIGATE_TIMEOUT_MS,
            )
        elif step.action is ActionType.CLICK:
            if selector:
                await page.click(selector, timeout=CLICK_TIMEOUT_MS)
        elif step.action is ActionType.FILL:
            if selector and params.get("value") is not None:
                await page.fill(selector, str(params["value"]))
        elif step.action is ActionType.WAIT:
            if params.get("duration"):
                await asyncio.sleep(float(params["duration"]) / 1000)
            elif selector:
                await page.wait_for_selector(selector, timeout=WAIT_TIMEOUT_MS)
        elif step.action is ActionType.SCROLL:
            await page.evaluate(
                "(amount) => window.scrollBy(0, amount)",
                params.get("amount") or DEFAULT_SCROLL_PX,
            )
            await asyncio.sleep(0.5)
        elif step.action is ActionType.EXTRACT:
            if selector:
                extracted = []
                for element in await page.query_selector_all(selector):
                    extracted.append(
                        {
                            "text": await element.text_content(),
                            "href": await element.get_attribute("href"),
                        }
                    )
                result.results[params.get("key") or "extracted"] = extracted
        elif step.action is ActionType.SCREENSHOT:
            result.screenshots.append(await self.screenshot())

    async def recover(self, step: WorkflowStep) -> None:
        recovery = step.error_recovery
        if recovery.get("scroll_and_retry"):
            await self.page.evaluate("() => window.scrollBy(0, 200)")
        if recovery.get("dismiss_popup"):
            try:
                await self.page.click(DISMISS_POPUP_SELECTOR, timeout=2_000)
            except Exception:
                logger.debug("No popup to dismiss before retrying step %d", step.step_order)

    async def screenshot(self) -> str:
        image = await self.page.screenshot(full_page=False)
        return "data:image/png;base64," + base64.b64encode(image).decode("ascii")


# ── Runner ────────────────────────────────────────────────────────────

class WorkflowRunner:
    """Runs a Workflow step by step with bounded per-step retries."""

    def __init__(
        self,
        executor: StepExecutor,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.executor = executor
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    @classmethod
    def for_page(cls, page: Any, **kwargs: Any) -> WorkflowRunner:
        return cls(PageStepExecutor(page), **kwargs)

    async def run(
        self, workflow: Workflow, variables: Mapping[str, Any] | None = None
    ) -> WorkflowResult:
        """Run to completion or raise WorkflowFailed."""
        variables = dict(variables or {})
        result = WorkflowResult(workflow_name=workflow.name)
        logger.info("Executing workflow: %s", workflow.name)
        result.log(f"Starting workflow: {workflow.name}")

        for step in workflow.ordered_steps():
            result.current_step = step.step_order
            progress = await self._run_step(step, variables, result)
            if progress.state is StepState.FAILED:
                error = progress.error or RuntimeError("unknown error")
                result.state = RunState.FAILED
                result.failed_step = step.step_order
                result.error = str(error)
                result.log(
                    f"Step {step.step_order} failed after {progress.attempt} attempts: {error}"
                )
                await self._capture_failure(result, step)
                raise WorkflowFailed(step.step_order, error, result) from error

        result.state = RunState.COMPLETED
        result.current_step = None
        result.log("Workflow completed successfully")
        return result

    async def _run_step(
        self, step: WorkflowStep, variables: Mapping[str, Any], result: WorkflowResult
    ) -> StepProgress:
        progress = StepProgress()
        while progress.state is StepState.ATTEMPTING:
            params = interpolate_parameters(step.parameters, variables)
            try:
                await self.executor.execute(step, params, result)
            except Exception as exc:
                logger.warning(
                    "Step %d (%s) failed (attempt %d/%d): %s",
                    step.step_order, step.action, progress.attempt, self.max_attempts, exc,
                )
                progress = step_errored(progress, exc, self.max_attempts)
            else:
                progress = step_succeeded(progress)
                result.log(f"Step {step.step_order} ({step.action}) completed")

            if progress.state is StepState.RECOVERING:
                await self._recover(step)
                await self._sleep(self.backoff_seconds * progress.attempt)
                progress = step_recovered(progress)
        return progress

    async def _recover(self, step: WorkflowStep) -> None:
        if not step.error_recovery:
            return
        try:
            await self.executor.recover(step)
        except Exception as exc:
            logger.debug("Error recovery for step %d failed: %s", step.step_order, exc)

    async def _capture_failure(self, result: WorkflowResult, step: WorkflowStep) -> None:
        try:
            result.screenshots.append(await self.executor.screenshot())
            result.log(f"Captured failure_step_{step.step_order} screenshot")
        except Exception as exc:
            logger.error("Failed to take failure screenshot: %s", exc)


# ── Stored workflows ──────────────────────────────────────────────────

async def load_workflow(session: AsyncSession, workflow_id: int) -> Workflow | None:
    """Load an active AutomationWorkflow and its steps."""
    row = await session.scalar(
        select(AutomationWorkflow)
        .options(selectinload(AutomationWorkflow.steps))
        .where(AutomationWorkflow.id == workflow_id, AutomationWorkflow.is_active.is_(True))
    )
    if row is None:
        return None
    return Workflow(
        id=row.id,
        name=row.name,
        source_id=row.source_id,
        version=row.version,
        steps=tuple(
            WorkflowStep(
                step_order=s.step_order,
                action=ActionType(s.action_type),
                css_selector=s.css_selector,
                xpath_selector=s.xpath_selector,
                parameters=s.parameters or {},
                error_recovery=s.error_recovery or {},
            )
            for s in row.steps
        ),
    )
