# browserflow/core/conditions.py
from __future__ import annotations

"""Condition evaluation for `conditional` steps and loop break conditions."""

from typing import Any, Mapping, Optional

from browserflow.core.workflow_loader import ConditionConfig
from browserflow.utils.logger import get_logger

log = get_logger(__name__)

CONDITION_KINDS = ("element_exists", "element_visible", "text_contains", "value_equals", "custom_js")
OPERATORS = ("equals", "not_equals", "contains", "not_contains", "greater_than", "less_than")

_CUSTOM_JS = "([script, variables]) => new Function('variables', script)(variables)"


def validate_condition(cfg: ConditionConfig, step_type: str = "conditional") -> Optional[str]:
    """Return an error message for an unusable condition, or None."""
    kind = cfg.condition_type
    if kind not in CONDITION_KINDS:
        return f"Unknown condition type: {kind}"
    if kind in ("element_exists", "element_visible", "text_contains") and not cfg.selector:
        return f"Selector is required for {step_type} step"
    if kind == "text_contains" and cfg.text is None:
        return f"Text is required for {step_type} step"
    if kind == "value_equals":
        if not (cfg.variable_name or cfg.selector):
            return f"Variable name is required for {step_type} step"
        if cfg.value is None:
            return f"Value is required for {step_type} step"
        if cfg.operator not in OPERATORS:
            return f"Unknown operator: {cfg.operator}"
    if kind == "custom_js" and not cfg.custom_script:
        return f"Custom script is required for {step_type} step"
    return None


def _to_float(s: str) -> Optional[float]:
    try:
        return float(s)
    except ValueError:
        return None


def compare_values(actual: Any, expected: Any, operator: str) -> bool:
    """Case-insensitive string comparison; greater/less parse floats."""
    a = ("" if actual is None else str(actual)).lower()
    e = str(expected).lower()
    if operator == "equals":
        return a == e
    if operator == "not_equals":
        return a != e
    if operator == "contains":
        return e in a
    if operator == "not_contains":
        return e not in a
    if operator in ("greater_than", "less_than"):
        fa, fe = _to_float(a), _to_float(e)
        if fa is None or fe is None:
            return False
        return fa > fe if operator == "greater_than" else fa < fe
    return False


async def evaluate_condition(cfg: ConditionConfig, page: Any, variables: Mapping[str, Any]) -> bool:
    """
    Evaluate a validated condition. Reads the page and the variables only;
    errors raised by the page count as False.
    """
    kind = cfg.condition_type
    try:
        if kind == "element_exists":
            return await page.locator(cfg.selector).count() > 0
        if kind == "element_visible":
            return await page.locator(cfg.selector).first.is_visible(timeout=1000)
        if kind == "text_contains":
            content = await page.locator(cfg.selector).first.text_content()
            return cfg.text in (content or "")
        if kind == "value_equals":
            actual = variables.get(cfg.variable_name or cfg.selector)
            return compare_values(actual, cfg.value, cfg.operator)
        if kind == "custom_js":
            result = await page.evaluate(_CUSTOM_JS, [cfg.custom_script, dict(variables)])
            return bool(result)
    except Exception as e:
        log.debug(f"Condition {kind} evaluated to false after error: {e}")
        return False
    return False
