# browserflow/core/errors.py
from __future__ import annotations


class AutomationError(RuntimeError):
    pass


class StepFailedError(AutomationError):
    """Raised out of a run after the first failing step."""

    def __init__(self, step_id: str, reason: str):
        super().__init__(f"Step {step_id} failed: {reason}")
        self.step_id = step_id
        self.reason = reason


class ResourceAcquisitionError(AutomationError):
    """No browser session could be obtained for the run."""
