import asyncio
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import pytest

from browserflow.capture.screenshot import MemoryScreenshotSink
from browserflow.core.engine import Engine
from browserflow.core.observer import ExecutionObserver
from browserflow.utils.config import EngineConfig, Settings
from browserflow.utils.human import HumanBehavior


# -------- fake Playwright objects --------


class FakeTimeout(Exception):
    pass


@dataclass
class FakeElement:
    text: str = ""
    html: Optional[str] = None
    attrs: dict = field(default_factory=dict)
    visible: bool = True

    @property
    def inner(self) -> str:
        return self.html if self.html is not None else self.text


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page
        self.typed: list[tuple[str, int]] = []
        self.pressed: list[str] = []

    async def type(self, text: str, delay: float = 0):
        self.page._check()
        self.typed.append((text, delay))

    async def press(self, key: str):
        self.page._check()
        self.pressed.append(key)


class FakeMouse:
    def __init__(self, page: "FakePage"):
        self.page = page
        self.moves: list[tuple[float, float, int]] = []
        self.wheels: list[tuple[float, float]] = []

    async def move(self, x: float, y: float, steps: int = 1):
        self.page._check()
        self.moves.append((x, y, steps))

    async def wheel(self, delta_x: float, delta_y: float):
        self.page._check()
        self.wheels.append((delta_x, delta_y))


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str, index: Optional[int] = None):
        self.page = page
        self.selector = selector
        self.index = index

    def _element(self) -> FakeElement:
        items = self.page.elements.get(self.selector, [])
        if not items:
            raise FakeTimeout(f"no element matches {self.selector}")
        return items[self.index or 0]

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.page, self.selector, 0)

    async def count(self) -> int:
        self.page._check()
        return len(self.page.elements.get(self.selector, []))

    async def all(self) -> list["FakeLocator"]:
        self.page._check()
        return [FakeLocator(self.page, self.selector, i) for i in range(len(self.page.elements.get(self.selector, [])))]

    async def is_visible(self, timeout: Optional[float] = None) -> bool:
        self.page._check()
        items = self.page.elements.get(self.selector, [])
        return bool(items) and items[self.index or 0].visible

    async def text_content(self) -> Optional[str]:
        self.page._check()
        return self._element().text

    async def inner_html(self) -> str:
        self.page._check()
        return self._element().inner

    async def get_attribute(self, name: str) -> Optional[str]:
        self.page._check()
        return self._element().attrs.get(name)

    async def press(self, key: str):
        self.page._check()
        self._element()
        self.page.calls.append(("press", self.selector, key))

    async def screenshot(self) -> bytes:
        self.page._check()
        self._element()
        return b"element-png"

    async def scroll_into_view_if_needed(self):
        self.page._check()
        self._element()
        self.page.calls.append(("scroll_into_view", self.selector))


class FakeDownload:
    def __init__(self, suggested_filename: str, content: bytes):
        self.suggested_filename = suggested_filename
        self.content = content

    async def save_as(self, path: str):
        Path(path).write_bytes(self.content)


class _EventInfo:
    def __init__(self, download: FakeDownload):
        self._download = download

    @property
    def value(self):
        async def _get():
            return self._download
        return _get()


class FakePage:
    def __init__(self, context: "FakeContext", elements: Optional[dict] = None):
        self.context = context
        self.elements: dict[str, list[FakeElement]] = {k: list(v) for k, v in (elements or {}).items()}
        self.url = "about:blank"
        self.keyboard = FakeKeyboard(self)
        self.mouse = FakeMouse(self)
        self.calls: list[tuple] = []
        self.local_storage: dict[str, str] = {}
        self.evaluate_result: Any = None
        self.default_timeout: Optional[int] = None
        self.pending_download: Optional[FakeDownload] = None
        self.fail_screenshot = False
        self.fail_close = False
        self._closed = False

    # -- lifecycle --
    def _check(self):
        if self._closed or self.context.browser.closed:
            raise RuntimeError("Target page, context or browser has been closed")

    def set_default_timeout(self, ms: int):
        self.default_timeout = ms

    def is_closed(self) -> bool:
        return self._closed

    async def close(self):
        if self.fail_close:
            raise RuntimeError("page close exploded")
        self._closed = True
        self.context.browser.events.append("page.close")

    # -- navigation / waiting --
    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[int] = None):
        self._check()
        self.calls.append(("goto", url))
        self.url = url

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[int] = None):
        self._check()

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: Optional[int] = None):
        self._check()
        items = self.elements.get(selector, [])
        present = bool(items) and (state == "attached" or items[0].visible)
        if state == "hidden":
            if items and items[0].visible:
                raise FakeTimeout(f"{selector} still visible")
            return None
        if not present:
            raise FakeTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return None

    async def wait_for_timeout(self, ms: float):
        remaining = ms
        while remaining > 0:
            self._check()
            await asyncio.sleep(0.005)
            remaining -= 5
        self._check()

    # -- interaction --
    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def _require(self, selector: str) -> FakeElement:
        self._check()
        items = self.elements.get(selector, [])
        if not items:
            raise FakeTimeout(f"no element matches {selector}")
        return items[0]

    async def click(self, selector: str, button: str = "left"):
        self._require(selector)
        self.calls.append(("click", selector, button))
        if self.pending_download is not None and selector in self.elements:
            self.calls.append(("download_triggered", selector))

    async def dblclick(self, selector: str):
        self._require(selector)
        self.calls.append(("dblclick", selector))

    async def hover(self, selector: str):
        self._require(selector)
        self.calls.append(("hover", selector))

    async def fill(self, selector: str, value: str):
        self._require(selector)
        self.calls.append(("fill", selector, value))

    async def drag_and_drop(self, source: str, target: str, timeout: Optional[int] = None):
        self._require(source)
        self._require(target)
        self.calls.append(("drag_and_drop", source, target))

    async def select_option(self, selector: str, value=None, label=None, index=None):
        self._require(selector)
        chosen = value if value is not None else (label if label is not None else f"option-{index}")
        self.calls.append(("select_option", selector, chosen))
        return [chosen]

    # -- reading --
    async def text_content(self, selector: str) -> Optional[str]:
        return self._require(selector).text

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        return self._require(selector).attrs.get(name)

    async def screenshot(self, full_page: bool = False) -> bytes:
        self._check()
        if self.fail_screenshot:
            raise RuntimeError("screenshot exploded")
        self.calls.append(("screenshot", full_page))
        return b"page-png-" + (b"full" if full_page else b"viewport")

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        self._check()
        self.calls.append(("evaluate", expression, arg))
        if "localStorage.setItem" in expression:
            key, value = arg
            self.local_storage[key] = value
            return None
        if "localStorage.getItem" in expression:
            return self.local_storage.get(arg)
        if callable(self.evaluate_result):
            return self.evaluate_result(expression, arg)
        return self.evaluate_result

    @asynccontextmanager
    async def expect_download(self, timeout: Optional[int] = None):
        if self.pending_download is None:
            raise FakeTimeout("no download")
        yield _EventInfo(self.pending_download)


class FakeContext:
    def __init__(self, browser: "FakeBrowser", elements: Optional[dict] = None, **kwargs):
        self.browser = browser
        self.kwargs = kwargs
        self.elements = elements
        self.cookie_jar: list[dict] = []
        self.pages: list[FakePage] = []

    async def new_page(self) -> FakePage:
        page = FakePage(self, self.elements)
        self.pages.append(page)
        return page

    async def add_cookies(self, cookies: list[dict]):
        self.cookie_jar.extend(cookies)

    async def cookies(self, urls=None) -> list[dict]:
        return list(self.cookie_jar)

    async def close(self):
        self.browser.events.append("context.close")


class FakeBrowser:
    def __init__(self, provider: "FakeProvider", elements: Optional[dict] = None, fail_new_context: bool = False):
        self.provider = provider
        self.elements = elements
        self.fail_new_context = fail_new_context
        self.closed = False
        self.events: list[str] = []
        self.contexts: list[FakeContext] = []

    async def new_context(self, **kwargs) -> FakeContext:
        if self.fail_new_context:
            raise RuntimeError("context creation failed")
        ctx = FakeContext(self, self.elements, **kwargs)
        self.contexts.append(ctx)
        return ctx

    async def close(self):
        self.events.append("browser.close")
        if not self.closed:
            self.closed = True
            self.provider.live -= 1


class FakeProvider:
    """Hands out FakeBrowsers and tracks how many are open at once."""

    def __init__(self, elements: Optional[dict] = None, fail_launch: bool = False, fail_new_context: bool = False):
        self.elements = elements or {}
        self.fail_launch = fail_launch
        self.fail_new_context = fail_new_context
        self.browsers: list[FakeBrowser] = []
        self.disposed: list[FakeBrowser] = []
        self.live = 0
        self.peak_live = 0

    async def launch(self) -> FakeBrowser:
        await asyncio.sleep(0)
        if self.fail_launch:
            raise RuntimeError("no browser available")
        b = FakeBrowser(self, self.elements, fail_new_context=self.fail_new_context)
        self.browsers.append(b)
        self.live += 1
        self.peak_live = max(self.peak_live, self.live)
        return b

    async def dispose(self, browser: FakeBrowser) -> None:
        self.disposed.append(browser)

    @property
    def last_page(self) -> FakePage:
        return self.browsers[-1].contexts[-1].pages[-1]


class RecordingObserver(ExecutionObserver):
    def __init__(self):
        self.events: list[tuple] = []

    def on_progress(self, progress):
        self.events.append(("progress", progress))

    def on_log(self, entry):
        self.events.append(("log", entry))

    async def on_step_complete(self, step_id, result):
        await asyncio.sleep(0)
        self.events.append(("step_complete", step_id, result))

    def on_error(self, error, step_id=None):
        self.events.append(("error", error, step_id))

    def on_complete(self, extracted_data):
        self.events.append(("complete", dict(extracted_data)))

    def kinds(self) -> list[str]:
        return [e[0] for e in self.events if e[0] != "log"]

    def of(self, kind: str) -> list[tuple]:
        return [e for e in self.events if e[0] == kind]


# -------- fixtures --------


async def _no_sleep(ms):
    return None


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        OUTPUT_DIR=tmp_path / "screenshots",
        DOWNLOAD_DIR=tmp_path / "downloads",
        LOG_FILE=tmp_path / "browserflow.log",
        HUMAN_DELAY_MIN_MS=0,
        HUMAN_DELAY_MAX_MS=0,
        TYPING_DELAY_MIN_MS=0,
        TYPING_DELAY_MAX_MS=0,
        RANDOMIZE_VIEWPORT=False,
        BROWSER_WS_ENDPOINT=None,
    )


@pytest.fixture
def human() -> HumanBehavior:
    return HumanBehavior(0, 0, typing_min_ms=0, typing_max_ms=0, rng=random.Random(7), sleep=_no_sleep)


@pytest.fixture
def page_elements() -> dict:
    return {
        "h1": [FakeElement(text="  Example Domain  ", html="Example Domain")],
        "li": [
            FakeElement(text=" one ", html="<b>one</b>", attrs={"data-id": "1"}),
            FakeElement(text="two", html="<b>two</b>", attrs={"data-id": "2"}),
            FakeElement(text="three", html="<b>three</b>", attrs={"data-id": "3"}),
        ],
        "a.more": [FakeElement(text="More information...", attrs={"href": "https://iana.org"})],
        "#hidden": [FakeElement(text="secret", visible=False)],
        "input[name=q]": [FakeElement()],
        "select#size": [FakeElement()],
        "#total": [FakeElement(text="Total: 42")],
    }


@pytest.fixture
def make_engine(settings, human, page_elements):
    def _make(provider: Optional[FakeProvider] = None, **config_overrides) -> Engine:
        cfg = dict(timeout_ms=1000, max_concurrent=2, screenshot_on_error=True)
        cfg.update(config_overrides)
        return Engine(
            settings=settings,
            config=EngineConfig(**cfg),
            provider=provider or FakeProvider(page_elements),
            human=human,
            screenshot_sink=MemoryScreenshotSink(),
        )

    return _make
