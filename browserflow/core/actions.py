# browserflow/core/actions.py
from __future__ import annotations

"""Step handlers
----------------
Maps a resolved step to Playwright page operations. Every handler returns a
StepResult: missing required fields and provider errors become failed results
("<Field> is required for <type> step", "<Label> failed: <message>") instead
of exceptions, so the interpreter decides what a failure means.
"""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError
from pydantic import ValidationError

from browserflow.capture.download import handle_download
from browserflow.capture.screenshot import ScreenshotSink
from browserflow.core.conditions import evaluate_condition, validate_condition
from browserflow.core.context import LOOP_VARIABLES, ExecutionContext, LoopContext, StepResult
from browserflow.core.resources import BrowserResources
from browserflow.core.workflow_loader import (
    ConditionConfig,
    DownloadFileConfig,
    DragDropConfig,
    ExecuteJsConfig,
    ExtractConfig,
    ExtractToVariableConfig,
    FillConfig,
    GetCookieConfig,
    GetLocalStorageConfig,
    LoopConfig,
    NavigateConfig,
    PressKeyConfig,
    ScreenshotConfig,
    ScrollConfig,
    SelectDropdownConfig,
    SelectorConfig,
    SetCookieConfig,
    SetLocalStorageConfig,
    SetVariableConfig,
    Step,
    StepType,
    WaitConfig,
    parse_step_config,
)
from browserflow.utils.config import EngineConfig, Settings
from browserflow.utils.human import HumanBehavior
from browserflow.utils.logger import get_logger
from browserflow.utils.timing import measure

__all__ = ["StepRuntime", "execute_step", "HANDLERS"]

log = get_logger(__name__)


@dataclass
class StepRuntime:
    """What a handler may touch while running one step of one run."""
    resources: BrowserResources
    context: ExecutionContext
    settings: Settings
    config: EngineConfig
    human: HumanBehavior
    screenshots: ScreenshotSink

    @property
    def page(self) -> Any:
        return self.resources.page

    @property
    def timeout_ms(self) -> int:
        return self.config.timeout_ms


# ------------- Internals -------------

def _required(field: str, step: Step) -> StepResult:
    return StepResult.fail(f"{field} is required for {step.type} step")


def _trimmed(text: Optional[str]) -> Optional[str]:
    return text.strip() if text is not None else None


async def _wait_visible(rt: StepRuntime, selector: str) -> None:
    await rt.page.wait_for_selector(selector, state="visible", timeout=rt.timeout_ms)


async def _settle(page: Any, state: str, timeout_ms: Optional[int] = None) -> None:
    """Best-effort load-state wait; a page that never settles is not a failure."""
    try:
        if timeout_ms is None:
            await page.wait_for_load_state(state)
        else:
            await page.wait_for_load_state(state, timeout=timeout_ms)
    except PlaywrightError as e:
        log.debug(f"Load state {state!r} not reached: {e}")


def _storage_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, default=str)


# ------------- Page interaction -------------

@measure("navigate")
async def _do_navigate(rt: StepRuntime, step: Step, cfg: NavigateConfig) -> StepResult:
    if not cfg.url:
        return _required("URL", step)
    page = rt.page
    await page.goto(cfg.url, wait_until="domcontentloaded", timeout=rt.timeout_ms)
    await _settle(page, "networkidle", rt.settings.NAVIGATION_IDLE_TIMEOUT_MS)
    return StepResult.ok({"url": page.url})


@measure("click")
async def _do_click(rt: StepRuntime, step: Step, cfg: SelectorConfig) -> StepResult:
    if not cfg.selector:
        return _required("Selector", step)
    await rt.human.pause()
    await _wait_visible(rt, cfg.selector)
    await rt.page.click(cfg.selector)
    await _settle(rt.page, "domcontentloaded")
    return StepResult.ok({"clicked": cfg.selector})


@measure("right_click")
async def _do_right_click(rt: StepRuntime, step: Step, cfg: SelectorConfig) -> StepResult:
    if not cfg.selector:
        return _required("Selector", step)
    await rt.human.pause()
    await _wait_visible(rt, cfg.selector)
    await rt.page.click(cfg.selector, button="right")
    return StepResult.ok({"rightClicked": cfg.selector})


@measure("double_click")
async def _do_double_click(rt: StepRuntime, step: Step, cfg: SelectorConfig) -> StepResult:
    if not cfg.selector:
        return _required("Selector", step)
    await rt.human.pause()
    await _wait_visible(rt, cfg.selector)
    await rt.page.dblclick(cfg.selector)
    return StepResult.ok({"doubleClicked": cfg.selector})


@measure("fill")
async def _do_fill(rt: StepRuntime, step: Step, cfg: FillConfig) -> StepResult:
    if not cfg.selector:
        return _required("Selector", step)
    if cfg.value is None:
        return _required("Value", step)
    text = str(cfg.value)
    await rt.human.pause()
    await _wait_visible(rt, cfg.selector)
    if rt.human.simulate_typing:
        await rt.human.type_text(rt.page, cfg.selector, text)
    else:
        await rt.page.fill(cfg.selector, text)
    return StepResult.ok({"filled": cfg.selector, "value": cfg.value})


@measure("hover")
async def _do_hover(rt: StepRuntime, step: Step, cfg: SelectorConfig) -> StepResult:
    if not cfg.selector:
        return _required("Selector", step)
    await _wait_visible(rt, cfg.selector)
    await rt.page.hover(cfg.selector)
    return StepResult.ok({"hovered": cfg.selector})


@measure("press_key")
async def _do_press_key(rt: StepRuntime, step: Step, cfg: PressKeyConfig) -> StepResult:
    if not cfg.key:
        return _required("Key", step)
    if cfg.selector:
        await _wait_visible(rt, cfg.selector)
        await rt.page.locator(cfg.selector).press(cfg.key)
    else:
        # focused element
        await rt.page.keyboard.press(cfg.key)
    return StepResult.ok({"pressed": cfg.key, "selector": cfg.selector})


@measure("scroll")
async def _do_scroll(rt: StepRuntime, step: Step, cfg: ScrollConfig) -> StepResult:
    page = rt.page
    if cfg.selector:
        await page.wait_for_selector(cfg.selector, state="attached", timeout=rt.timeout_ms)
        await page.locator(cfg.selector).first.scroll_into_view_if_needed()
        return StepResult.ok({"scrolled": "element", "selector": cfg.selector})
    if cfg.x is not None or cfg.y is not None:
        await page.evaluate(
            "([x, y]) => window.scrollTo(x ?? window.scrollX, y ?? window.scrollY)",
            [cfg.x, cfg.y],
        )
        return StepResult.ok({"scrolled": "position", "x": cfg.x, "y": cfg.y})
    return StepResult.fail("Either selector or x/y coordinates are required for scroll step")


@measure("drag_drop")
async def _do_drag_drop(rt: StepRuntime, step: Step, cfg: DragDropConfig) -> StepResult:
    if not cfg.source_selector:
        return _required("Source selector", step)
    if not cfg.target_selector:
        return _required("Target selector", step)
    await _wait_visible(rt, cfg.source_selector)
    await rt.page.drag_and_drop(cfg.source_selector, cfg.target_selector, timeout=rt.timeout_ms)
    return StepResult.ok({"dragged": cfg.source_selector, "droppedOn": cfg.target_selector})


@measure("select_dropdown")
async def _do_select_dropdown(rt: StepRuntime, step: Step, cfg: SelectDropdownConfig) -> StepResult:
    if not cfg.selector:
        return _required("Selector", step)
    if cfg.value is not None:
        choice = {"value": cfg.value}
    elif cfg.label is not None:
        choice = {"label": cfg.label}
    elif cfg.index is not None:
        choice = {"index": cfg.index}
    else:
        return _required("Value, label or index", step)
    await _wait_visible(rt, cfg.selector)
    selected = await rt.page.select_option(cfg.selector, **choice)
    return StepResult.ok({"selector": cfg.selector, "selected": selected})


# ------------- Waiting -------------

@measure("wait")
async def _do_wait(rt: StepRuntime, step: Step, cfg: WaitConfig) -> StepResult:
    # selector wins when both are given
    if cfg.selector:
        try:
            await rt.page.wait_for_selector(cfg.selector, state=cfg.state, timeout=rt.timeout_ms)
        except Exception as e:
            return StepResult.fail(f"Wait for element failed: {e}")
        return StepResult.ok({"waited": "element", "selector": cfg.selector, "state": cfg.state})
    if cfg.duration:
        try:
            await rt.page.wait_for_timeout(cfg.duration)
        except Exception as e:
            return StepResult.fail(f"Wait for duration failed: {e}")
        return StepResult.ok({"waited": "duration", "duration": cfg.duration})
    return StepResult.fail("Either duration or selector is required for wait step")


# ------------- Reading the page -------------

async def _read(page: Any, selector: str, attribute: Optional[str], timeout_ms: int) -> Optional[str]:
    await page.wait_for_selector(selector, state="attached", timeout=timeout_ms)
    if attribute:
        return await page.get_attribute(selector, attribute)
    return _trimmed(await page.text_content(selector))


@measure("extract")
async def _do_extract(rt: StepRuntime, step: Step, cfg: ExtractConfig) -> StepResult:
    if not cfg.selector:
        return _required("Selector", step)
    if cfg.multiple:
        data: Any = []
        for element in await rt.page.locator(cfg.selector).all():
            if cfg.attribute:
                data.append(await element.get_attribute(cfg.attribute))
            else:
                data.append(_trimmed(await element.text_content()))
    else:
        data = await _read(rt.page, cfg.selector, cfg.attribute, rt.timeout_ms)
    if cfg.field_name:
        data = {cfg.field_name: data}
    return StepResult.ok(data)


@measure("extract_to_variable")
async def _do_extract_to_variable(rt: StepRuntime, step: Step, cfg: ExtractToVariableConfig) -> StepResult:
    if not cfg.selector:
        return _required("Selector", step)
    if not cfg.variable_name:
        return _required("Variable name", step)
    value = await _read(rt.page, cfg.selector, cfg.attribute, rt.timeout_ms)
    rt.context.variables[cfg.variable_name] = value
    return StepResult.ok({cfg.variable_name: value})


@measure("screenshot")
async def _do_screenshot(rt: StepRuntime, step: Step, cfg: ScreenshotConfig) -> StepResult:
    page = rt.page
    if cfg.selector:
        await _wait_visible(rt, cfg.selector)
        data = await page.locator(cfg.selector).screenshot()
        kind = "element"
    else:
        data = await page.screenshot(full_page=True if cfg.full_page is None else cfg.full_page)
        kind = "page"
    ref = await rt.screenshots.store(
        data,
        name=cfg.name or step.id,
        kind=kind,
        url=page.url,
        execution_id=rt.context.execution_id,
    )
    return StepResult.ok(ref.to_dict(), screenshot=ref)


@measure("execute_js")
async def _do_execute_js(rt: StepRuntime, step: Step, cfg: ExecuteJsConfig) -> StepResult:
    if not cfg.code:
        return _required("Code", step)
    result = await rt.page.evaluate("(code) => new Function(code)()", cfg.code)
    return StepResult.ok(result)


# ------------- Variables & storage -------------

async def _do_set_variable(rt: StepRuntime, step: Step, cfg: SetVariableConfig) -> StepResult:
    if not cfg.variable_name:
        return _required("Variable name", step)
    rt.context.variables[cfg.variable_name] = cfg.variable_value
    return StepResult.ok({cfg.variable_name: cfg.variable_value})


@measure("set_cookie")
async def _do_set_cookie(rt: StepRuntime, step: Step, cfg: SetCookieConfig) -> StepResult:
    if not cfg.name:
        return _required("Name", step)
    if cfg.value is None:
        return _required("Value", step)
    cookie: dict[str, Any] = {"name": cfg.name, "value": str(cfg.value)}
    # Playwright needs either url or domain+path
    if cfg.domain:
        cookie["domain"] = cfg.domain
        cookie["path"] = cfg.path or "/"
    else:
        cookie["url"] = cfg.url or rt.page.url
    if cfg.expires is not None:
        cookie["expires"] = cfg.expires
    if cfg.http_only is not None:
        cookie["httpOnly"] = cfg.http_only
    if cfg.secure is not None:
        cookie["secure"] = cfg.secure
    await rt.resources.context.add_cookies([cookie])
    return StepResult.ok({"name": cfg.name, "value": cookie["value"]})


@measure("get_cookie")
async def _do_get_cookie(rt: StepRuntime, step: Step, cfg: GetCookieConfig) -> StepResult:
    if not cfg.name:
        return _required("Name", step)
    cookies = await rt.resources.context.cookies()
    match = next((c for c in cookies if c.get("name") == cfg.name), None)
    value = match.get("value") if match else None
    if cfg.variable_name:
        rt.context.variables[cfg.variable_name] = value
    return StepResult.ok({"name": cfg.name, "value": value, "found": match is not None})


@measure("set_localstorage")
async def _do_set_localstorage(rt: StepRuntime, step: Step, cfg: SetLocalStorageConfig) -> StepResult:
    if not cfg.key:
        return _required("Key", step)
    if cfg.value is None:
        return _required("Value", step)
    text = _storage_text(cfg.value)
    await rt.page.evaluate("([k, v]) => window.localStorage.setItem(k, v)", [cfg.key, text])
    return StepResult.ok({"key": cfg.key, "value": text})


@measure("get_localstorage")
async def _do_get_localstorage(rt: StepRuntime, step: Step, cfg: GetLocalStorageConfig) -> StepResult:
    if not cfg.key:
        return _required("Key", step)
    value = await rt.page.evaluate("(k) => window.localStorage.getItem(k)", cfg.key)
    if cfg.variable_name:
        rt.context.variables[cfg.variable_name] = value
    return StepResult.ok({"key": cfg.key, "value": value})


# ------------- Downloads -------------

@measure("download_file")
async def _do_download_file(rt: StepRuntime, step: Step, cfg: DownloadFileConfig) -> StepResult:
    page = rt.page
    if cfg.trigger_method == "navigate":
        if not cfg.url:
            return _required("URL", step)

        async def trigger() -> None:
            try:
                await page.goto(cfg.url, timeout=rt.timeout_ms)
            except PlaywrightError as e:
                # goto on an attachment aborts once the download begins
                if "Download is starting" not in str(e):
                    raise
    else:
        if not cfg.selector:
            return _required("Selector", step)

        async def trigger() -> None:
            await _wait_visible(rt, cfg.selector)
            await page.click(cfg.selector)

    result = await handle_download(
        page,
        trigger,
        rt.settings.DOWNLOAD_DIR / rt.context.execution_id,
        filename=cfg.filename,
        timeout_ms=cfg.timeout_ms or rt.timeout_ms,
    )
    return StepResult.ok(result.to_dict())


# ------------- Conditions & loops -------------

def _condition_metadata(cfg: ConditionConfig) -> dict[str, Any]:
    meta = {
        "selector": cfg.selector,
        "text": cfg.text,
        "value": cfg.value,
        "variableName": cfg.variable_name,
    }
    if cfg.condition_type == "value_equals":
        meta["operator"] = cfg.operator
    return {k: v for k, v in meta.items() if v is not None}


async def _do_conditional(rt: StepRuntime, step: Step, cfg: ConditionConfig) -> StepResult:
    """Evaluate and record the outcome. Subsequent steps run regardless of it."""
    problem = validate_condition(cfg, step.type)
    if problem:
        return StepResult.fail(problem)
    result = await evaluate_condition(cfg, rt.page, rt.context.variables)
    return StepResult.ok({"conditionType": cfg.condition_type, "result": result, **_condition_metadata(cfg)})


@measure("loop")
async def _do_loop(rt: StepRuntime, step: Step, cfg: LoopConfig) -> StepResult:
    """
    Iterate over matched elements or a fixed count, at most `maxIterations`
    times. Each iteration binds the loop variables and records the element's
    text/HTML; it never runs other steps.
    """
    loop_type = cfg.loop_type or ("elements" if cfg.selector else "count")
    if loop_type not in ("elements", "count"):
        return StepResult.fail(f"Unknown loop type: {loop_type}")
    if loop_type == "elements" and not cfg.selector:
        return _required("Selector", step)
    if loop_type == "count" and cfg.count is None:
        return _required("Count", step)
    if cfg.break_condition is not None:
        problem = validate_condition(cfg.break_condition, step.type)
        if problem:
            return StepResult.fail(problem)

    cap = cfg.max_iterations or rt.settings.LOOP_MAX_ITERATIONS
    page = rt.page
    elements: list[Any] = []
    if loop_type == "elements":
        elements = await page.locator(cfg.selector).all()
        total = len(elements)
    else:
        total = cfg.count
    planned = min(total, cap)

    ctx = rt.context
    variables = ctx.variables
    loop_ctx = LoopContext(step_id=step.id, total_iterations=planned)
    ctx.loop_context = loop_ctx
    results: list[dict[str, Any]] = []
    try:
        for i in range(planned):
            loop_ctx.current_iteration = i
            variables["loopIndex"] = i
            variables["loopTotal"] = planned
            variables["loopIteration"] = i + 1
            if loop_type == "elements":
                element = elements[i]
                loop_ctx.current_element = element
                text = _trimmed(await element.text_content()) or ""
                html = await element.inner_html()
                variables["loopElementText"] = text
                variables["loopElementHTML"] = html
                results.append({"index": i, "text": text, "html": html})
            else:
                results.append({"index": i})

            if cfg.break_condition is not None and await evaluate_condition(cfg.break_condition, page, variables):
                loop_ctx.should_break = True
                break
    finally:
        for name in LOOP_VARIABLES:
            variables.pop(name, None)
        ctx.loop_context = None

    data: dict[str, Any] = {"iterations": len(results), "totalElements": total, "results": results}
    if loop_ctx.should_break:
        data["brokeEarly"] = True
    if total > cap:
        log.warning(f"Loop {step.id} capped at {cap} of {total} iterations")
    return StepResult.ok(data)


# ------------- Dispatch -------------

Handler = Callable[[StepRuntime, Step, Any], Awaitable[StepResult]]

HANDLERS: dict[str, tuple[str, Handler]] = {
    StepType.navigate.value: ("Navigation", _do_navigate),
    StepType.click.value: ("Click", _do_click),
    StepType.fill.value: ("Fill", _do_fill),
    StepType.extract.value: ("Extract", _do_extract),
    StepType.wait.value: ("Wait", _do_wait),
    StepType.screenshot.value: ("Screenshot", _do_screenshot),
    StepType.scroll.value: ("Scroll", _do_scroll),
    StepType.hover.value: ("Hover", _do_hover),
    StepType.press_key.value: ("Press key", _do_press_key),
    StepType.execute_js.value: ("JavaScript execution", _do_execute_js),
    StepType.set_variable.value: ("Set variable", _do_set_variable),
    StepType.extract_to_variable.value: ("Extract to variable", _do_extract_to_variable),
    StepType.conditional.value: ("Condition evaluation", _do_conditional),
    StepType.loop.value: ("Loop", _do_loop),
    StepType.download_file.value: ("Download", _do_download_file),
    StepType.drag_drop.value: ("Drag and drop", _do_drag_drop),
    StepType.set_cookie.value: ("Set cookie", _do_set_cookie),
    StepType.get_cookie.value: ("Get cookie", _do_get_cookie),
    StepType.set_localstorage.value: ("Set localStorage", _do_set_localstorage),
    StepType.get_localstorage.value: ("Get localStorage", _do_get_localstorage),
    StepType.select_dropdown.value: ("Select dropdown", _do_select_dropdown),
    StepType.right_click.value: ("Right click", _do_right_click),
    StepType.double_click.value: ("Double click", _do_double_click),
}


def _config_error(step: Step, ve: ValidationError) -> str:
    parts = []
    for e in ve.errors():
        loc = ".".join(str(p) for p in e.get("loc", []))
        parts.append(f"{loc}: {e.get('msg', 'invalid value')}" if loc else e.get("msg", "invalid value"))
    return f"Invalid config for {step.type} step: " + "; ".join(parts)


async def execute_step(rt: StepRuntime, step: Step) -> StepResult:
    """Run one resolved step. Never raises for validation or provider failures."""
    entry = HANDLERS.get(step.type)
    if entry is None:
        return StepResult.fail(f"Unknown step type: {step.type}")
    label, handler = entry

    try:
        cfg = parse_step_config(step)
    except ValidationError as ve:
        return StepResult.fail(_config_error(step, ve))

    try:
        return await handler(rt, step, cfg)
    except Exception as e:
        return StepResult.fail(f"{label} failed: {e}")
