# browserflow/core/observer.py
from __future__ import annotations

"""Observer contract
--------------------
Telemetry hooks the interpreter calls inline, on the run's own task, in step
order. Each hook may be a plain function or a coroutine function; the engine
waits for it to finish before moving on, so a slow sink slows the run down
but cannot reorder events. Running without an observer is identical to
running with the no-op `ExecutionObserver`.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from browserflow.core.context import ExecutionProgress, StepResult
from browserflow.utils.logger import log_with_context
from browserflow.utils.timing import maybe_await

LogLevelName = Literal["info", "warn", "error"]

_PY_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


@dataclass(frozen=True)
class LogEntry:
    level: LogLevelName
    message: str
    step_id: Optional[str] = None


class ExecutionObserver:
    """Base observer; every hook is a no-op. Subclass and override what you need."""

    def on_progress(self, progress: ExecutionProgress) -> Any:
        return None

    def on_log(self, entry: LogEntry) -> Any:
        return None

    def on_step_complete(self, step_id: str, result: StepResult) -> Any:
        return None

    def on_error(self, error: BaseException, step_id: Optional[str] = None) -> Any:
        return None

    def on_complete(self, extracted_data: dict[str, Any]) -> Any:
        return None


Hook = Callable[..., Union[Awaitable[Any], Any]]


class CallbackObserver(ExecutionObserver):
    """Observer assembled from optional callables (sync or async)."""

    def __init__(
        self,
        on_progress: Optional[Hook] = None,
        on_log: Optional[Hook] = None,
        on_step_complete: Optional[Hook] = None,
        on_error: Optional[Hook] = None,
        on_complete: Optional[Hook] = None,
    ) -> None:
        self._hooks = {
            "progress": on_progress,
            "log": on_log,
            "step_complete": on_step_complete,
            "error": on_error,
            "complete": on_complete,
        }

    def _call(self, name: str, *args: Any) -> Any:
        fn = self._hooks[name]
        return fn(*args) if fn is not None else None

    def on_progress(self, progress):
        return self._call("progress", progress)

    def on_log(self, entry):
        return self._call("log", entry)

    def on_step_complete(self, step_id, result):
        return self._call("step_complete", step_id, result)

    def on_error(self, error, step_id=None):
        return self._call("error", error, step_id)

    def on_complete(self, extracted_data):
        return self._call("complete", extracted_data)


class Notifier:
    """Awaits observer hooks in order and mirrors log entries to the package logger."""

    def __init__(self, observer: Optional[ExecutionObserver], logger: logging.LoggerAdapter):
        self.observer = observer or ExecutionObserver()
        self.log = logger

    async def log_entry(self, level: LogLevelName, message: str, step_id: Optional[str] = None) -> None:
        target = log_with_context(self.log, step_id=step_id) if step_id else self.log
        target.log(_PY_LEVELS[level], message)
        await maybe_await(self.observer.on_log(LogEntry(level=level, message=message, step_id=step_id)))

    async def progress(self, progress: ExecutionProgress) -> None:
        await maybe_await(self.observer.on_progress(progress))

    async def step_complete(self, step_id: str, result: StepResult) -> None:
        await maybe_await(self.observer.on_step_complete(step_id, result))

    async def error(self, error: BaseException, step_id: Optional[str]) -> None:
        await maybe_await(self.observer.on_error(error, step_id))

    async def complete(self, extracted_data: dict[str, Any]) -> None:
        await maybe_await(self.observer.on_complete(extracted_data))
