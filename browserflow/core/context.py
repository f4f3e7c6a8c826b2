# browserflow/core/context.py
from __future__ import annotations

"""Per-run state and result shapes shared by the interpreter and handlers."""

from dataclasses import dataclass, field
from typing import Any, Optional

from browserflow.core.workflow_loader import WorkflowDefinition

LOOP_VARIABLES = ("loopIndex", "loopTotal", "loopIteration", "loopElementText", "loopElementHTML")


@dataclass
class LoopContext:
    step_id: str
    total_iterations: int
    current_iteration: int = 0
    current_element: Any = None
    should_break: bool = False


@dataclass
class ExecutionContext:
    """State of one run. Never shared between runs."""
    execution_id: str
    workflow_id: str
    user_id: str
    definition: WorkflowDefinition
    variables: dict[str, Any] = field(default_factory=dict)
    extracted_data: dict[str, Any] = field(default_factory=dict)
    loop_context: Optional[LoopContext] = None

    def __post_init__(self) -> None:
        # authored defaults first, caller bindings win
        if self.definition.variables:
            self.variables = {**self.definition.variables, **self.variables}


@dataclass
class StepResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    screenshot: Any = None  # ScreenshotRef from the configured sink

    @classmethod
    def ok(cls, data: Any = None, screenshot: Any = None) -> "StepResult":
        return cls(success=True, data=data, screenshot=screenshot)

    @classmethod
    def fail(cls, error: str) -> "StepResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class ExecutionProgress:
    current_step: int
    total_steps: int
    percentage: int
    estimated_time_remaining_ms: Optional[int] = None


def _round_half_up(x: float) -> int:
    return int(x + 0.5)


def compute_progress(index: int, total: int, elapsed_ms: int) -> ExecutionProgress:
    """Progress for the step at 0-based `index` about to run."""
    current = index + 1
    eta = None
    if index > 0:
        eta = _round_half_up(elapsed_ms / index * (total - index))
    return ExecutionProgress(
        current_step=current,
        total_steps=total,
        percentage=_round_half_up(current / total * 100),
        estimated_time_remaining_ms=eta,
    )
