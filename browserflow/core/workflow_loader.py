# browserflow/core/workflow_loader.py
from __future__ import annotations

"""Workflow schema and loader
-----------------------------
Defines the pydantic models for steps and workflow definitions, the typed
per-step config models the interpreter parses at dispatch time, and loads
YAML/JSON workflow files (multi-document YAML included).
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional, Type

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# ---------- Step kinds ----------


class StepType(str, Enum):
    navigate = "navigate"
    click = "click"
    fill = "fill"
    extract = "extract"
    wait = "wait"
    screenshot = "screenshot"
    scroll = "scroll"
    hover = "hover"
    press_key = "press_key"
    execute_js = "execute_js"
    set_variable = "set_variable"
    extract_to_variable = "extract_to_variable"
    conditional = "conditional"
    loop = "loop"
    download_file = "download_file"
    drag_drop = "drag_drop"
    set_cookie = "set_cookie"
    get_cookie = "get_cookie"
    set_localstorage = "set_localstorage"
    get_localstorage = "get_localstorage"
    select_dropdown = "select_dropdown"
    right_click = "right_click"
    double_click = "double_click"


STEP_TYPES = frozenset(t.value for t in StepType)


# ---------- Authored models ----------


class Step(BaseModel):
    """One declarative operation. `config` keeps the authored camelCase keys."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1)
    type: str = Field(..., description="One of StepType; unknown kinds fail at run time")
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("config", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return {} if v is None else v


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    steps: list[Step]
    variables: dict[str, Any] = Field(default_factory=dict, description="Default variable bindings")

    @field_validator("steps")
    @classmethod
    def _at_least_one(cls, v: list[Step]) -> list[Step]:
        if not v:
            raise ValueError("workflow must define at least one step")
        return v

    @model_validator(mode="after")
    def _unique_ids(self) -> "WorkflowDefinition":
        seen: set[str] = set()
        for s in self.steps:
            if s.id in seen:
                raise ValueError(f"duplicate step id: {s.id!r}")
            seen.add(s.id)
        return self


# ---------- Typed step configs ----------


class StepConfig(BaseModel):
    """
    Base for per-kind configs. Every field is optional here: missing required
    fields are reported by the handler as a failed StepResult, not raised.
    Unknown keys are kept (extra="allow") for forward compatibility. Numeric
    YAML/JSON scalars are accepted for text fields (`value: 2`, `key: 1`).
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow", coerce_numbers_to_str=True
    )


class GenericStepConfig(StepConfig):
    pass


class SelectorConfig(StepConfig):
    selector: Optional[str] = None


class NavigateConfig(StepConfig):
    url: Optional[str] = None


class FillConfig(SelectorConfig):
    value: Any = None


class ExtractConfig(SelectorConfig):
    attribute: Optional[str] = None
    multiple: bool = False
    field_name: Optional[str] = None


class WaitConfig(SelectorConfig):
    duration: Optional[float] = Field(default=None, ge=0)
    state: Literal["visible", "hidden", "attached"] = "visible"


class ScreenshotConfig(SelectorConfig):
    full_page: Optional[bool] = None
    name: Optional[str] = None


class ScrollConfig(SelectorConfig):
    x: Optional[float] = None
    y: Optional[float] = None


class PressKeyConfig(SelectorConfig):
    key: Optional[str] = None


class ExecuteJsConfig(StepConfig):
    code: Optional[str] = Field(default=None, validation_alias=AliasChoices("code", "script"))


class SetVariableConfig(StepConfig):
    variable_name: Optional[str] = None
    variable_value: Any = None


class ExtractToVariableConfig(SelectorConfig):
    variable_name: Optional[str] = None
    attribute: Optional[str] = None


ConditionKind = Literal["element_exists", "element_visible", "text_contains", "value_equals", "custom_js"]
ComparisonOperator = Literal["equals", "not_equals", "contains", "not_contains", "greater_than", "less_than"]


class ConditionConfig(SelectorConfig):
    condition_type: str = "element_exists"
    text: Optional[str] = None
    value: Any = None
    operator: str = "equals"
    variable_name: Optional[str] = None
    custom_script: Optional[str] = None


class LoopConfig(SelectorConfig):
    loop_type: Optional[str] = None
    count: Optional[int] = Field(default=None, ge=0)
    max_iterations: Optional[int] = Field(default=None, ge=1)
    break_condition: Optional[ConditionConfig] = None


class DownloadFileConfig(SelectorConfig):
    trigger_method: Literal["click", "navigate"] = "click"
    url: Optional[str] = None
    filename: Optional[str] = None
    timeout_ms: Optional[int] = Field(default=None, ge=1)


class DragDropConfig(StepConfig):
    source_selector: Optional[str] = None
    target_selector: Optional[str] = None


class SetCookieConfig(StepConfig):
    name: Optional[str] = None
    value: Any = None
    url: Optional[str] = None
    domain: Optional[str] = None
    path: Optional[str] = None
    expires: Optional[float] = None
    http_only: Optional[bool] = None
    secure: Optional[bool] = None


class GetCookieConfig(StepConfig):
    name: Optional[str] = None
    variable_name: Optional[str] = None


class SetLocalStorageConfig(StepConfig):
    key: Optional[str] = None
    value: Any = None


class GetLocalStorageConfig(StepConfig):
    key: Optional[str] = None
    variable_name: Optional[str] = None


class SelectDropdownConfig(SelectorConfig):
    value: Optional[str] = None
    label: Optional[str] = None
    index: Optional[int] = Field(default=None, ge=0)


STEP_CONFIG_MODELS: dict[str, Type[StepConfig]] = {
    StepType.navigate.value: NavigateConfig,
    StepType.click.value: SelectorConfig,
    StepType.fill.value: FillConfig,
    StepType.extract.value: ExtractConfig,
    StepType.wait.value: WaitConfig,
    StepType.screenshot.value: ScreenshotConfig,
    StepType.scroll.value: ScrollConfig,
    StepType.hover.value: SelectorConfig,
    StepType.press_key.value: PressKeyConfig,
    StepType.execute_js.value: ExecuteJsConfig,
    StepType.set_variable.value: SetVariableConfig,
    StepType.extract_to_variable.value: ExtractToVariableConfig,
    StepType.conditional.value: ConditionConfig,
    StepType.loop.value: LoopConfig,
    StepType.download_file.value: DownloadFileConfig,
    StepType.drag_drop.value: DragDropConfig,
    StepType.set_cookie.value: SetCookieConfig,
    StepType.get_cookie.value: GetCookieConfig,
    StepType.set_localstorage.value: SetLocalStorageConfig,
    StepType.get_localstorage.value: GetLocalStorageConfig,
    StepType.select_dropdown.value: SelectDropdownConfig,
    StepType.right_click.value: SelectorConfig,
    StepType.double_click.value: SelectorConfig,
}


def parse_step_config(step: Step) -> StepConfig:
    """Parse a (resolved) step's config bag into its typed model. Raises ValidationError."""
    model = STEP_CONFIG_MODELS.get(step.type, GenericStepConfig)
    return model.model_validate(step.config)


def format_validation_error(ve: ValidationError, prefix: str) -> str:
    lines = [prefix]
    for e in ve.errors():
        loc = ".".join(str(p) for p in e.get("loc", []))
        msg = e.get("msg", "invalid value")
        lines.append(f"  - {loc}: {msg}" if loc else f"  - {msg}")
    return "\n".join(lines)


# ---------- Public API ----------


def _check_known_types(defn: WorkflowDefinition) -> None:
    unknown = [f"{s.id} ({s.type})" for s in defn.steps if s.type not in STEP_TYPES]
    if unknown:
        raise ValueError("Unknown step type(s): " + ", ".join(unknown))


def parse_workflow(data: Any, source: str = "<memory>") -> WorkflowDefinition:
    """Validate an already-deserialized workflow mapping."""
    if not isinstance(data, dict):
        raise ValueError(f"Workflow in {source} must be a mapping/object at the top level.")
    # Accept the stored shape {"definition": {"steps": [...]}} as well as a bare definition
    if "steps" not in data and isinstance(data.get("definition"), dict):
        data = {**data["definition"], **{k: v for k, v in data.items() if k != "definition"}}
    try:
        defn = WorkflowDefinition.model_validate(data)
    except ValidationError as ve:
        raise ValueError(format_validation_error(ve, f"Invalid workflow '{source}':")) from ve
    _check_known_types(defn)
    return defn


def load_workflows_file(path: Path | str) -> list[WorkflowDefinition]:
    """Load one or more workflows from a YAML (multi-document) or JSON file."""
    wf_path = Path(path)
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    raw = wf_path.read_text(encoding="utf-8")

    if wf_path.suffix.lower() == ".json":
        try:
            docs = [json.loads(raw)]
        except json.JSONDecodeError as je:
            raise ValueError(f"JSON parse error in {wf_path}: {je}") from je
    else:
        try:
            docs = list(yaml.safe_load_all(raw))
        except yaml.YAMLError as ye:
            raise ValueError(f"YAML parse error in {wf_path}: {ye}") from ye

    out: list[WorkflowDefinition] = []
    multi = len(docs) > 1
    for idx, data in enumerate(docs, start=1):
        if data is None:
            continue
        source = f"{wf_path} (document {idx})" if multi else str(wf_path)
        defn = parse_workflow(data, source)
        if defn.name is None:
            defn.name = wf_path.stem if not multi else f"{wf_path.stem}#{idx}"
        out.append(defn)
    if not out:
        raise ValueError(f"No workflow documents found in {wf_path}")
    return out


def load_workflow(path: Path | str) -> WorkflowDefinition:
    """Load a single-workflow file."""
    workflows = load_workflows_file(path)
    if len(workflows) != 1:
        raise ValueError(f"{path} holds {len(workflows)} workflows; use load_workflows_file()")
    return workflows[0]


def find_workflow_files(root: Path, recursive: bool = True) -> list[Path]:
    patterns = ("*.yaml", "*.yml", "*.json")
    files: list[Path] = []
    for pat in patterns:
        files.extend(root.rglob(pat) if recursive else root.glob(pat))
    return sorted(files)


__all__ = [
    "StepType",
    "STEP_TYPES",
    "Step",
    "WorkflowDefinition",
    "StepConfig",
    "STEP_CONFIG_MODELS",
    "parse_step_config",
    "parse_workflow",
    "load_workflow",
    "load_workflows_file",
    "find_workflow_files",
]
