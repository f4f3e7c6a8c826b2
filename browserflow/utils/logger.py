# browserflow/utils/logger.py
from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from browserflow.utils.config import get_settings, LogLevel, Settings


__all__ = [
    "get_logger",
    "set_log_level",
    "bind",
    "unbind",
    "log_with_context",
    "attach_file_logger",
    "detach_file_logger",
]


# ------------- Internal state -------------

_config_lock = threading.Lock()
_configured = False
_global_extra: Dict[str, Any] = {}  # context attached to every record (e.g. cli invocation id)

ROOT_LOGGER_NAME = "browserflow"


# ------------- JSON Formatter (for file logs) -------------

class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.
    Keeps message as `msg` and merges the adapter context (execution_id, step_id, ...).
    """

    default_time_format = "%Y-%m-%dT%H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        if hasattr(record, "extra") and isinstance(record.extra, dict):
            payload.update(record.extra)

        # concurrent runs share one process; task name tells them apart
        payload["task"] = getattr(record, "taskName", None)
        payload["process"] = record.process

        return json.dumps(payload, ensure_ascii=False, default=str)


class _ContextPrefixFormatter(logging.Formatter):
    """Console formatter: prefixes the message with [execution/step] when bound."""

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        extra = getattr(record, "extra", None)
        if not isinstance(extra, dict):
            return msg
        tags = [str(extra[k]) for k in ("execution_id", "step_id") if extra.get(k)]
        return f"[{'/'.join(tags)}] {msg}" if tags else msg


# ------------- Helpers -------------

_LEVEL_MAP = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


def _console_handler(settings: Settings, level: int) -> RichHandler:
    # step ids like "[step go]" must not be read as rich markup
    console = Console(
        stderr=True,
        force_jupyter=False,
        color_system="auto",
        no_color=not settings.COLORIZED_OUTPUT,
    )
    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
        omit_repeated_times=False,
    )
    handler.setFormatter(_ContextPrefixFormatter("%(message)s"))
    handler.setLevel(level)
    return handler


def _ensure_configured() -> None:
    """
    Configure the package logger once based on settings.
    Subsequent calls are no-ops.
    """
    global _configured
    if _configured:
        return

    with _config_lock:
        if _configured:
            return

        settings = get_settings()
        level = _LEVEL_MAP.get(settings.LOG_LEVEL, logging.INFO)

        base = logging.getLogger(ROOT_LOGGER_NAME)
        base.setLevel(level)
        for h in list(base.handlers):
            base.removeHandler(h)

        base.addHandler(_console_handler(settings, level))

        if settings.LOG_TO_FILE:
            settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                filename=str(settings.LOG_FILE),
                maxBytes=5 * 1024 * 1024,  # 5MB per file
                backupCount=5,
                encoding="utf-8",
                delay=True,
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(JsonFormatter())
            base.addHandler(file_handler)

        # Playwright's driver chatter is only useful when debugging
        for n in ("asyncio", "playwright"):
            logging.getLogger(n).setLevel(max(level, logging.WARNING))

        _configured = True


def _qualified(name: Optional[str]) -> str:
    if not name:
        return ROOT_LOGGER_NAME
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return name
    return f"{ROOT_LOGGER_NAME}.{name}"


def get_logger(name: Optional[str] = None) -> logging.LoggerAdapter:
    """
    Get a configured logger wrapped with a LoggerAdapter
    that injects `_global_extra` into every log record.
    """
    _ensure_configured()
    return logging.LoggerAdapter(logging.getLogger(_qualified(name)), extra={"extra": _global_extra})


def set_log_level(level: LogLevel | str) -> None:
    """Adjust the package log level at runtime."""
    _ensure_configured()
    lvl = level if isinstance(level, str) else level.value
    py_level = getattr(logging, lvl.upper(), logging.INFO)
    base = logging.getLogger(ROOT_LOGGER_NAME)
    base.setLevel(py_level)
    for h in base.handlers:
        h.setLevel(py_level)


def bind(**kwargs: Any) -> None:
    """
    Bind global context (e.g., invocation="20251019T101500Z").
    Attached to every subsequent log line.
    """
    _global_extra.update(kwargs)


def unbind(*keys: str) -> None:
    for k in keys:
        _global_extra.pop(k, None)


def log_with_context(logger: logging.LoggerAdapter, **kwargs: Any) -> logging.LoggerAdapter:
    """
    Return a new LoggerAdapter that merges additional context for a scoped section.
    Usage:
        log = get_logger(__name__)
        run_log = log_with_context(log, execution_id="exec-1")
        run_log.info("starting")
    """
    merged = dict(_global_extra)
    current = logger.extra.get("extra") if isinstance(logger.extra, dict) else None
    if isinstance(current, dict):
        merged.update(current)
    merged.update(kwargs)
    return logging.LoggerAdapter(logger.logger, extra={"extra": merged})


# ------------- Dynamic file logging -------------

def attach_file_logger(path: os.PathLike | str, level: Optional[int] = None) -> logging.Handler:
    """
    Attach a JSON file handler at runtime (e.g., `browserflow run --log-file`).
    Returns the handler so the caller can later detach it via detach_file_logger.
    """
    _ensure_configured()
    base = logging.getLogger(ROOT_LOGGER_NAME)
    lvl = level if level is not None else base.level
    p = os.fspath(path)
    parent = os.path.dirname(p)
    if parent:
        os.makedirs(parent, exist_ok=True)
    fh = RotatingFileHandler(filename=p, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8", delay=True)
    fh.setLevel(lvl)
    fh.setFormatter(JsonFormatter())
    base.addHandler(fh)
    return fh


def detach_file_logger(handler: logging.Handler) -> None:
    """Remove a previously attached handler returned by attach_file_logger."""
    logging.getLogger(ROOT_LOGGER_NAME).removeHandler(handler)
    handler.close()
