# browserflow/utils/human.py
from __future__ import annotations

"""Human-like timing
--------------------
Randomized pauses between steps and before risky interactions, per-character
typing delays, and the fingerprint-reducing launch/context options used when
a browser session is created. The random source and the sleep coroutine are
injectable so tests can pin timing down.
"""

import random
from typing import Any, Awaitable, Callable, Optional

from browserflow.utils.config import Settings
from browserflow.utils.timing import async_sleep_ms

# Chromium flags that reduce automation fingerprint leaks
STEALTH_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-webrtc-hw-encoding",
    "--disable-webrtc-hw-decoding",
    "--force-webrtc-ip-handling-policy=disable_non_proxied_udp",
]

STEALTH_CONTEXT_OPTIONS = {
    "locale": "en-US",
    "timezone_id": "America/New_York",
    "permissions": [],
}

# Common desktop sizes; avoids every session reporting exactly 1920x1080
_VIEWPORTS = [
    (1920, 1080),
    (1903, 1067),
    (1912, 1074),
    (1920, 1080),
    (1536, 864),
    (1440, 900),
    (1680, 1050),
    (1366, 768),
]


def randomized_viewport(rng: Optional[random.Random] = None) -> dict[str, int]:
    width, height = (rng or random).choice(_VIEWPORTS)
    return {"width": width, "height": height}


class HumanBehavior:
    """Uniformly random delays in configurable millisecond ranges."""

    def __init__(
        self,
        min_ms: int = 200,
        max_ms: int = 800,
        *,
        typing_min_ms: int = 40,
        typing_max_ms: int = 120,
        simulate_typing: bool = True,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = async_sleep_ms,
    ) -> None:
        if min_ms < 0 or max_ms < min_ms:
            raise ValueError(f"invalid delay range [{min_ms}, {max_ms}]")
        if typing_min_ms < 0 or typing_max_ms < typing_min_ms:
            raise ValueError(f"invalid typing delay range [{typing_min_ms}, {typing_max_ms}]")
        self.min_ms = min_ms
        self.max_ms = max_ms
        self.typing_min_ms = typing_min_ms
        self.typing_max_ms = typing_max_ms
        self.simulate_typing = simulate_typing
        self.rng = rng or random.Random()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "HumanBehavior":
        kwargs: dict[str, Any] = dict(
            min_ms=settings.HUMAN_DELAY_MIN_MS,
            max_ms=settings.HUMAN_DELAY_MAX_MS,
            typing_min_ms=settings.TYPING_DELAY_MIN_MS,
            typing_max_ms=settings.TYPING_DELAY_MAX_MS,
            simulate_typing=settings.HUMAN_TYPING,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    # ---------- delays ----------

    def delay_ms(self) -> int:
        return round(self.rng.uniform(self.min_ms, self.max_ms))

    def typing_delays(self, text: str) -> list[int]:
        return [round(self.rng.uniform(self.typing_min_ms, self.typing_max_ms)) for _ in text]

    async def pause(self) -> int:
        """Sleep a random inter-step delay; returns the chosen duration."""
        ms = self.delay_ms()
        await self._sleep(ms)
        return ms

    # ---------- interactions ----------

    async def mouse_wander(self, page: Any) -> tuple[int, int]:
        """Move the pointer to a random spot, as an idle user would."""
        x = self.rng.randint(100, 899)
        y = self.rng.randint(100, 599)
        await page.mouse.move(x, y, steps=self.rng.randint(5, 15))
        return x, y

    async def scroll(self, page: Any) -> int:
        """Wheel down a small random amount, then pause briefly."""
        delta = self.rng.randint(100, 400)
        await page.mouse.wheel(0, delta)
        await self._sleep(round(self.rng.uniform(100, 300)))
        return delta

    async def type_text(self, page: Any, selector: str, text: str) -> None:
        """Focus `selector`, clear it, then type `text` one character at a time."""
        await page.click(selector)
        await page.fill(selector, "")
        for char, delay in zip(text, self.typing_delays(text)):
            await page.keyboard.type(char, delay=delay)
