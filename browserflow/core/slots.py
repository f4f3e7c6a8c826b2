# browserflow/core/slots.py
from __future__ import annotations

"""Admission control: bounds how many runs hold a browser session at once."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from browserflow.utils.logger import get_logger

log = get_logger(__name__)


class SlotManager:
    """
    Counting gate over one asyncio.Condition. The capacity check and the
    increment happen while holding the condition's lock, so two waiters can
    never both take the last free slot. Waiters are not served FIFO.
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max = max_concurrent
        self._current = 0
        self._peak = 0
        self._cond = asyncio.Condition()

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def current(self) -> int:
        return self._current

    @property
    def peak(self) -> int:
        """Highest `current` observed since construction."""
        return self._peak

    async def acquire(self) -> None:
        async with self._cond:
            if self._current >= self._max:
                log.debug(f"All {self._max} slot(s) busy; waiting")
            await self._cond.wait_for(lambda: self._current < self._max)
            self._current += 1
            self._peak = max(self._peak, self._current)

    async def release(self) -> None:
        async with self._cond:
            if self._current == 0:
                log.warning("release() without a matching acquire(); ignoring")
                return
            self._current -= 1
            self._cond.notify(1)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            await self.release()
