"""Workflow interpolation, per-step retry state machine and run outcome."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from workers.automation.workflow import (
    ActionType,
    RunState,
    StepProgress,
    StepState,
    Workflow,
    WorkflowFailed,
    WorkflowRunner,
    WorkflowStep,
    interpolate,
    interpolate_parameters,
    load_workflow,
    step_errored,
    step_recovered,
    step_succeeded,
)
from core.models import AutomationStep, AutomationWorkflow


class FakeExecutor:
    """Records executed steps; ``failures`` maps step_order → errors to raise first."""

    def __init__(self, failures=None, screenshot_error=None):
        self.failures = {order: list(errors) for order, errors in (failures or {}).items()}
        self.executed = []
        self.params = []
        self.recovered = []
        self.screenshot_error = screenshot_error

    async def execute(self, step, params, result):
        self.executed.append(step.step_order)
        self.params.append(params)
        pending = self.failures.get(step.step_order)
        if pending:
            raise pending.pop(0)
        if step.action is ActionType.EXTRACT:
            result.results[params.get("key", "extracted")] = [{"text": "ok", "href": None}]

    async def recover(self, step):
        self.recovered.append(step.step_order)

    async def screenshot(self):
        if self.screenshot_error:
            raise self.screenshot_error
        return "data:image/png;base64,AAAA"


def three_steps(recovery=None):
    return Workflow(
        name="three",
        steps=(
            WorkflowStep(1, ActionType.NAVIGATE, parameters={"url": "{{url}}"}),
            WorkflowStep(2, ActionType.CLICK, css_selector="#go", error_recovery=recovery or {}),
            WorkflowStep(3, ActionType.EXTRACT, css_selector=".out", parameters={"key": "out"}),
        ),
    )


def make_runner(executor):
    sleep = AsyncMock()
    return WorkflowRunner(executor, max_attempts=3, backoff_seconds=1.0, sleep=sleep), sleep


def test_interpolate_replaces_known_and_blanks_unknown():
    assert interpolate("{{a}}-{{b}}-{{missing}}", {"a": 1, "b": "x"}) == "1-x-"
    assert interpolate("no tokens", {"a": 1}) == "no tokens"
    assert interpolate("{{a}}", {"a": None}) == ""


def test_interpolate_parameters_only_touches_strings():
    params = interpolate_parameters({"url": "https://x/{{id}}", "amount": 500}, {"id": 7})
    assert params == {"url": "https://x/7", "amount": 500}


def test_step_state_transitions():
    progress = StepProgress()
    failed_once = step_errored(progress, RuntimeError("boom"), max_attempts=3)
    assert failed_once.state is StepState.RECOVERING
    retry = step_recovered(failed_once)
    assert (retry.state, retry.attempt) == (StepState.ATTEMPTING, 2)
    exhausted = step_errored(StepProgress(attempt=3), RuntimeError("boom"), max_attempts=3)
    assert exhausted.state is StepState.FAILED
    assert step_succeeded(retry).state is StepState.SUCCEEDED


@pytest.mark.asyncio
async def test_successful_run_collects_results():
    executor = FakeExecutor()
    runner, sleep = make_runner(executor)

    result = await runner.run(three_steps(), {"url": "https://example.com"})

    assert result.state is RunState.COMPLETED
    assert result.results == {"out": [{"text": "ok", "href": None}]}
    assert executor.executed == [1, 2, 3]
    assert executor.params[0] == {"url": "https://example.com"}
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_failure_at_step_two_stops_the_run():
    executor = FakeExecutor(failures={2: [RuntimeError("gone")] * 3})
    runner, sleep = make_runner(executor)

    with pytest.raises(WorkflowFailed) as excinfo:
        await runner.run(three_steps(), {"url": "https://example.com"})

    failure = excinfo.value
    assert failure.step_order == 2
    assert failure.result.state is RunState.FAILED
    assert failure.result.failed_step == 2
    assert failure.result.screenshots == ["data:image/png;base64,AAAA"]
    assert executor.executed == [1, 2, 2, 2]
    assert 3 not in executor.executed
    # backoff grows linearly with the attempt number
    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_step_recovers_and_run_completes():
    executor = FakeExecutor(failures={2: [RuntimeError("overlay")]})
    runner, _ = make_runner(executor)

    result = await runner.run(three_steps(recovery={"dismiss_popup": True}), {})

    assert result.state is RunState.COMPLETED
    assert executor.executed == [1, 2, 2, 3]
    assert executor.recovered == [2]


@pytest.mark.asyncio
async def test_recovery_only_runs_when_declared():
    executor = FakeExecutor(failures={2: [RuntimeError("overlay")]})
    runner, _ = make_runner(executor)

    await runner.run(three_steps(), {})

    assert executor.recovered == []


@pytest.mark.asyncio
async def test_steps_run_in_step_order():
    executor = FakeExecutor()
    runner, _ = make_runner(executor)
    workflow = Workflow(
        name="shuffled",
        steps=(
            WorkflowStep(3, ActionType.WAIT, parameters={"duration": 0}),
            WorkflowStep(1, ActionType.NAVIGATE, parameters={"url": "https://a"}),
            WorkflowStep(2, ActionType.SCROLL),
        ),
    )

    await runner.run(workflow)

    assert executor.executed == [1, 2, 3]


@pytest.mark.asyncio
async def test_screenshot_failure_does_not_mask_step_failure():
    executor = FakeExecutor(
        failures={1: [RuntimeError("nav")] * 3}, screenshot_error=RuntimeError("page crashed")
    )
    runner, _ = make_runner(executor)

    with pytest.raises(WorkflowFailed) as excinfo:
        await runner.run(three_steps(), {})

    assert excinfo.value.step_order == 1
    assert excinfo.value.result.screenshots == []


def test_xpath_selector_is_prefixed():
    step = WorkflowStep(1, ActionType.CLICK, xpath_selector="//button")
    assert step.selector == "xpath=//button"
    assert WorkflowStep(1, ActionType.CLICK, css_selector="#a", xpath_selector="//b").selector == "#a"


@pytest.mark.asyncio
async def test_load_workflow_orders_stored_steps(session_factory):
    async with session_factory() as session:
        workflow = AutomationWorkflow(name="stored")
        workflow.steps = [
            AutomationStep(step_order=2, action_type="click", css_selector="#b"),
            AutomationStep(step_order=1, action_type="navigate", parameters={"url": "{{u}}"}),
        ]
        session.add(workflow)
        await session.commit()
        workflow_id = workflow.id

    async with session_factory() as session:
        loaded = await load_workflow(session, workflow_id)
        assert await load_workflow(session, workflow_id + 100) is None

    assert loaded.name == "stored"
    assert [(s.step_order, s.action) for s in loaded.ordered_steps()] == [
        (1, ActionType.NAVIGATE),
        (2, ActionType.CLICK),
    ]
