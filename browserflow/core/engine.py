from __future__ import annotations

"""Workflow engine
-------------------
Runs a workflow definition against one browser session: waits for a
concurrency slot, acquires the session, resolves and dispatches each step in
order, reports to the observer, and aborts on the first failed step. The
session is torn down on every exit path.
"""

import uuid
from typing import Any, Optional

from browserflow.capture.screenshot import FileScreenshotSink, ScreenshotSink
from browserflow.core.actions import StepRuntime, execute_step
from browserflow.core.context import ExecutionContext, StepResult, compute_progress
from browserflow.core.errors import ResourceAcquisitionError, StepFailedError
from browserflow.core.observer import ExecutionObserver, Notifier
from browserflow.core.resources import BrowserProvider, ResourceManager, SessionRegistry, provider_from_settings
from browserflow.core.workflow_loader import Step, StepType, WorkflowDefinition
from browserflow.utils.config import EngineConfig, Settings, get_settings
from browserflow.utils.human import HumanBehavior
from browserflow.utils.logger import get_logger, log_with_context
from browserflow.utils.timing import Stopwatch
from browserflow.utils.variables import VariableResolver

# Step kinds whose data is kept under the step id in extracted_data
DATA_STEP_TYPES = frozenset(
    t.value
    for t in (
        StepType.extract,
        StepType.extract_to_variable,
        StepType.conditional,
        StepType.loop,
    )
)

# Step kinds whose data ({variableName: value}) is also kept under the variable name
VARIABLE_STEP_TYPES = frozenset((StepType.set_variable.value, StepType.extract_to_variable.value))


class Engine:
    """Executes workflows; one instance can serve many concurrent runs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config: Optional[EngineConfig] = None,
        registry: Optional[SessionRegistry] = None,
        provider: Optional[BrowserProvider] = None,
        human: Optional[HumanBehavior] = None,
        screenshot_sink: Optional[ScreenshotSink] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or self.settings.engine_config()
        self.log = get_logger(__name__)
        self.registry = registry or SessionRegistry(self.config.max_concurrent)
        if self.registry.slots.max_concurrent != self.config.max_concurrent:
            # a shared registry owns the bound
            self.log.warning(
                f"max_concurrent={self.config.max_concurrent} overridden by shared registry "
                f"(max_concurrent={self.registry.slots.max_concurrent})"
            )
            self.config = self.config.model_copy(update={"max_concurrent": self.registry.slots.max_concurrent})
        self.provider = provider or provider_from_settings(self.settings, headless=self.config.headless)
        self.human = human or HumanBehavior.from_settings(self.settings)
        self.screenshots = screenshot_sink or FileScreenshotSink(self.settings.OUTPUT_DIR)
        self.resolver = VariableResolver()
        self.resources = ResourceManager(self.provider, self.registry, self.config, self.settings, rng=self.human.rng)

    @property
    def active_count(self) -> int:
        """Runs currently holding a slot."""
        return self.registry.slots.current

    @property
    def max_concurrent(self) -> int:
        return self.registry.slots.max_concurrent

    async def execute_workflow(
        self,
        context: ExecutionContext,
        observer: Optional[ExecutionObserver] = None,
    ) -> dict[str, Any]:
        """Run every step of `context.definition`; returns the extracted data.

        Raises StepFailedError after the first failing step and
        ResourceAcquisitionError when no browser session could be obtained.
        """
        run_log = log_with_context(self.log, execution_id=context.execution_id)
        notify = Notifier(observer, run_log)
        steps = context.definition.steps
        total = len(steps)

        async with self.registry.slots.slot():
            sw = Stopwatch().start()
            await notify.log_entry("info", f"Starting workflow execution: {context.workflow_id}")
            try:
                async with self.resources.session() as res:
                    rt = StepRuntime(res, context, self.settings, self.config, self.human, self.screenshots)
                    for i, step in enumerate(steps):
                        resolved = self.resolver.resolve_step(step, context.variables)
                        await notify.log_entry("info", f"Executing step {i + 1}/{total}: {step.type}", step.id)
                        await notify.progress(compute_progress(i, total, sw.elapsed_ms()))

                        result = await execute_step(rt, resolved)
                        if not result.success:
                            await self._fail(rt, notify, step, result)

                        self._merge_extracted(context, step, result)
                        await notify.log_entry("info", f"Step {i + 1} completed successfully", step.id)
                        await notify.step_complete(step.id, result)

                        if i < total - 1:
                            await self.human.pause()
            except ResourceAcquisitionError as e:
                await notify.log_entry("error", str(e))
                await notify.error(e, None)
                raise

            await notify.log_entry("info", f"Workflow completed successfully in {sw.elapsed_ms()}ms")
            await notify.complete(context.extracted_data)
        return context.extracted_data

    async def shutdown(self) -> int:
        """Force-close every browser still registered. In-flight steps then fail."""
        closed = await self.registry.close_all()
        self.log.info(f"Shutdown closed {closed} browser(s)")
        return closed

    # ---------- internals ----------

    @staticmethod
    def _merge_extracted(context: ExecutionContext, step: Step, result: StepResult) -> None:
        if result.data is None:
            return
        if step.type in DATA_STEP_TYPES:
            context.extracted_data[step.id] = result.data
        if step.type in VARIABLE_STEP_TYPES and isinstance(result.data, dict):
            context.extracted_data.update(result.data)

    async def _fail(self, rt: StepRuntime, notify: Notifier, step: Step, result: StepResult) -> None:
        if self.config.screenshot_on_error:
            await self._error_screenshot(rt, notify, step, result)
        await notify.log_entry("error", f"Step failed: {result.error}", step.id)
        error = StepFailedError(step.id, result.error or "unknown error")
        await notify.error(error, step.id)
        raise error

    async def _error_screenshot(self, rt: StepRuntime, notify: Notifier, step: Step, result: StepResult) -> None:
        page = rt.page
        try:
            data = await page.screenshot(full_page=True)
            ref = await self.screenshots.store(
                data,
                name=f"error-{step.id}",
                kind="page",
                url=page.url,
                execution_id=rt.context.execution_id,
            )
        except Exception as e:
            await notify.log_entry("error", f"Failed to capture error screenshot: {e}", step.id)
            return
        result.screenshot = ref
        await notify.log_entry("info", f"Error screenshot captured ({ref.size} bytes)", step.id)


def new_context(
    definition: WorkflowDefinition,
    variables: Optional[dict[str, Any]] = None,
    *,
    execution_id: Optional[str] = None,
    user_id: str = "local",
) -> ExecutionContext:
    return ExecutionContext(
        execution_id=execution_id or uuid.uuid4().hex[:12],
        workflow_id=definition.id or definition.name or "workflow",
        user_id=user_id,
        definition=definition,
        variables=dict(variables or {}),
    )


async def run_workflow(
    definition: WorkflowDefinition,
    variables: Optional[dict[str, Any]] = None,
    *,
    engine: Optional[Engine] = None,
    observer: Optional[ExecutionObserver] = None,
) -> dict[str, Any]:
    """Convenience wrapper: build a context and run it on `engine` (or a fresh one)."""
    eng = engine or Engine(settings=get_settings())
    return await eng.execute_workflow(new_context(definition, variables), observer)
