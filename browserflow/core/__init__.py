"""
Core package for browserflow.
Lightweight package init to avoid import cycles.

Consumers should import submodules directly, e.g.:
  from browserflow.core.workflow_loader import load_workflow, WorkflowDefinition
  from browserflow.core.engine import Engine, run_workflow
  from browserflow.core.observer import CallbackObserver
"""

__all__: list[str] = []
