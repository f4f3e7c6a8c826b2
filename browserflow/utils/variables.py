# browserflow/utils/variables.py
from __future__ import annotations

"""Variable templates
---------------------
Resolves `${name}` placeholders (including dotted paths such as
`${user.email}`) inside step configs against a run's variable bindings.
Resolution always builds new containers; the input tree is never mutated.
"""

import json
import re
from typing import Any, Mapping

__all__ = [
    "VariableResolver",
    "substitute",
    "substitute_tree",
    "extract_variable_names",
    "lookup",
]

PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")

_MISSING = object()


def lookup(variables: Mapping[str, Any], path: str) -> Any:
    """Walk a dotted path through nested mappings. Returns `_MISSING` when absent."""
    current: Any = variables
    for key in path.split("."):
        if isinstance(current, Mapping) and key in current:
            current = current[key]
        else:
            return _MISSING
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def substitute(value: Any, variables: Mapping[str, Any]) -> Any:
    """
    Replace every `${name}` in a string. Non-strings are returned unchanged.
    Unknown names are left in place so a later binding can still fill them.
    """
    if not isinstance(value, str) or "${" not in value:
        return value

    def repl(m: re.Match) -> str:
        found = lookup(variables, m.group(1).strip())
        return m.group(0) if found is _MISSING else _stringify(found)

    return PLACEHOLDER.sub(repl, value)


def substitute_tree(obj: Any, variables: Mapping[str, Any]) -> Any:
    """Deep variant of `substitute` over dicts, lists and tuples."""
    if isinstance(obj, str):
        return substitute(obj, variables)
    if isinstance(obj, Mapping):
        return {k: substitute_tree(v, variables) for k, v in obj.items()}
    if isinstance(obj, list):
        return [substitute_tree(v, variables) for v in obj]
    if isinstance(obj, tuple):
        return tuple(substitute_tree(v, variables) for v in obj)
    return obj


def extract_variable_names(value: str) -> list[str]:
    """Names referenced by the placeholders of `value`, in order of appearance."""
    return [m.group(1).strip() for m in PLACEHOLDER.finditer(value or "")]


class VariableResolver:
    """Produces the per-execution resolved copy of a step."""

    def resolve_config(self, config: Mapping[str, Any], variables: Mapping[str, Any]) -> dict[str, Any]:
        return substitute_tree(dict(config), variables)

    def resolve_step(self, step, variables: Mapping[str, Any]):
        """Return a copy of `step` whose config has every placeholder resolved."""
        return step.model_copy(update={"config": self.resolve_config(step.config, variables)})
