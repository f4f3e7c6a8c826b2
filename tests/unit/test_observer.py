import pytest

from browserflow.core.context import ExecutionContext, StepResult, compute_progress
from browserflow.core.observer import CallbackObserver, LogEntry, Notifier
from browserflow.core.workflow_loader import WorkflowDefinition
from browserflow.utils.logger import get_logger


def test_compute_progress_values():
    first = compute_progress(0, 4, elapsed_ms=0)
    assert (first.current_step, first.total_steps, first.percentage) == (1, 4, 25)
    assert first.estimated_time_remaining_ms is None

    third = compute_progress(2, 4, elapsed_ms=300)
    assert third.percentage == 75
    # 150 ms per finished step, 2 still to go
    assert third.estimated_time_remaining_ms == 300


def test_context_merges_definition_defaults():
    definition = WorkflowDefinition(steps=[{"id": "a", "type": "click"}], variables={"x": 1, "y": 2})
    ctx = ExecutionContext("e", "w", "u", definition, variables={"y": 3})
    assert ctx.variables == {"x": 1, "y": 3}
    assert ctx.extracted_data == {}


@pytest.mark.asyncio
async def test_notifier_awaits_sync_and_async_hooks():
    seen = []

    async def on_log(entry):
        seen.append(entry)

    def on_complete(data):
        seen.append(("complete", data))

    notify = Notifier(CallbackObserver(on_log=on_log, on_complete=on_complete), get_logger("tests"))
    await notify.log_entry("warn", "careful", step_id="s1")
    await notify.step_complete("s1", StepResult.ok({"a": 1}))
    await notify.complete({"a": 1})

    assert seen == [LogEntry(level="warn", message="careful", step_id="s1"), ("complete", {"a": 1})]


@pytest.mark.asyncio
async def test_notifier_without_observer_is_noop():
    notify = Notifier(None, get_logger("tests"))
    await notify.log_entry("info", "hello")
    await notify.progress(compute_progress(0, 1, 0))
    await notify.error(RuntimeError("x"), None)
    await notify.complete({})
