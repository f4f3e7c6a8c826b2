# browserflow/core/resources.py
from __future__ import annotations

"""Browser session lifecycle
----------------------------
Obtains exactly one browser session per run, either by launching a local
headless Chromium or by attaching to a pre-provisioned endpoint, and tears it
down (page -> context -> browser) on every exit path. A `SessionRegistry`
tracks live browsers plus the concurrency slots so `Engine.shutdown()` can
force-close whatever is still open.
"""

import asyncio
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from playwright.async_api import async_playwright

from browserflow.core.errors import ResourceAcquisitionError
from browserflow.core.slots import SlotManager
from browserflow.utils.config import EngineConfig, Settings
from browserflow.utils.human import STEALTH_CONTEXT_OPTIONS, STEALTH_LAUNCH_ARGS, randomized_viewport
from browserflow.utils.logger import get_logger

log = get_logger(__name__)


@dataclass
class BrowserResources:
    browser: Any = None
    context: Any = None
    page: Any = None


# ---------- Registry ----------


class SessionRegistry:
    """
    State shared by every run of one or more engines: the live-browser set
    (guarded by its own lock) and the admission slots. Pass the same
    registry to several engines to make them share one concurrency budget.
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        self.slots = SlotManager(max_concurrent)
        self._live: set[Any] = set()
        self._lock = asyncio.Lock()

    @property
    def live_count(self) -> int:
        return len(self._live)

    def live(self) -> list[Any]:
        return list(self._live)

    async def register(self, browser: Any) -> None:
        async with self._lock:
            self._live.add(browser)

    async def unregister(self, browser: Any) -> None:
        async with self._lock:
            self._live.discard(browser)

    async def close_all(self) -> int:
        """Force-close every registered browser. Returns how many were closed."""
        async with self._lock:
            browsers = list(self._live)
            self._live.clear()
        results = await asyncio.gather(*(b.close() for b in browsers), return_exceptions=True)
        for res in results:
            if isinstance(res, Exception):
                log.warning(f"Error force-closing browser: {res}")
        return len(browsers)


# ---------- Providers ----------


class BrowserProvider:
    """Hands out browser handles; how they are obtained is a configuration detail."""

    async def launch(self) -> Any:
        raise NotImplementedError

    async def dispose(self, browser: Any) -> None:
        """Release anything the provider keeps per browser (e.g. the Playwright driver)."""
        return None


class _PlaywrightProvider(BrowserProvider):
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._drivers: dict[Any, Any] = {}

    async def _open(self, pw) -> Any:
        raise NotImplementedError

    async def launch(self) -> Any:
        pw = await async_playwright().start()
        try:
            browser = await self._open(pw)
        except BaseException:
            await pw.stop()
            raise
        self._drivers[browser] = pw
        return browser

    async def dispose(self, browser: Any) -> None:
        pw = self._drivers.pop(browser, None)
        if pw is not None:
            await pw.stop()


class LocalBrowserProvider(_PlaywrightProvider):
    """Launches a fresh Chromium with anti-fingerprinting flags."""

    def __init__(self, settings: Settings, headless: Optional[bool] = None) -> None:
        super().__init__(settings)
        self.headless = headless

    async def _open(self, pw) -> Any:
        kwargs = self.settings.playwright_launch_kwargs(self.headless)
        return await pw.chromium.launch(args=list(STEALTH_LAUNCH_ARGS), **kwargs)


class RemoteBrowserProvider(_PlaywrightProvider):
    """Attaches to an already running browser over the Chrome DevTools Protocol."""

    def __init__(self, settings: Settings, endpoint: str) -> None:
        super().__init__(settings)
        self.endpoint = endpoint

    async def _open(self, pw) -> Any:
        return await pw.chromium.connect_over_cdp(self.endpoint, timeout=self.settings.TIMEOUT_MS)


def provider_from_settings(settings: Settings, headless: Optional[bool] = None) -> BrowserProvider:
    if settings.BROWSER_WS_ENDPOINT:
        return RemoteBrowserProvider(settings, settings.BROWSER_WS_ENDPOINT)
    return LocalBrowserProvider(settings, headless=headless)


# ---------- Lifecycle ----------


class ResourceManager:
    def __init__(
        self,
        provider: BrowserProvider,
        registry: SessionRegistry,
        config: EngineConfig,
        settings: Settings,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.config = config
        self.settings = settings
        self.rng = rng or random.Random()

    def context_kwargs(self) -> dict:
        kwargs = self.settings.playwright_context_kwargs()
        if self.settings.RANDOMIZE_VIEWPORT:
            kwargs["viewport"] = randomized_viewport(self.rng)
        kwargs.update(STEALTH_CONTEXT_OPTIONS)
        kwargs["accept_downloads"] = True
        return kwargs

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserResources]:
        res = BrowserResources()
        try:
            res.browser = await self.provider.launch()
            await self.registry.register(res.browser)
            res.context = await res.browser.new_context(**self.context_kwargs())
            res.page = await res.context.new_page()
            res.page.set_default_timeout(self.config.timeout_ms)
        except Exception as e:
            await self.teardown(res)
            raise ResourceAcquisitionError(f"Could not acquire browser session: {e}") from e

        try:
            yield res
        finally:
            await self.teardown(res)

    async def teardown(self, res: BrowserResources) -> None:
        """Close page, context, browser in that order. Failures are logged, never raised."""
        if res.page is not None:
            try:
                if not res.page.is_closed():
                    await res.page.close()
            except Exception as e:
                log.warning(f"Error closing page: {e}")

        if res.context is not None:
            try:
                await res.context.close()
            except Exception as e:
                log.warning(f"Error closing context: {e}")

        if res.browser is not None:
            await self.registry.unregister(res.browser)
            try:
                await res.browser.close()
            except Exception as e:
                log.warning(f"Error closing browser: {e}")
            try:
                await self.provider.dispose(res.browser)
            except Exception as e:
                log.warning(f"Error stopping browser driver: {e}")
