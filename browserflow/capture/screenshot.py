# browserflow/capture/screenshot.py
from __future__ import annotations

"""Screenshot sinks
------------------
Handlers capture PNG bytes from the page and hand them to a sink, which
decides where they end up and returns a `ScreenshotRef` describing them.
`FileScreenshotSink` writes under OUTPUT_DIR/<execution_id>/ and drops the
bytes; `MemoryScreenshotSink` keeps them on the ref (tests, embedding).
"""

import asyncio
import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from browserflow.utils.logger import get_logger


def _ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


@dataclass
class ScreenshotRef:
    name: str
    kind: str               # "page" or "element"
    size: int               # bytes
    url: str = ""
    ts: str = field(default_factory=_ts)
    path: Optional[Path] = None
    data: Optional[bytes] = field(default=None, repr=False)

    def to_dict(self, include_data: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind,
            "size": self.size,
            "url": self.url,
            "ts": self.ts,
            "path": str(self.path) if self.path else None,
        }
        if include_data and self.data is not None:
            out["data"] = base64.b64encode(self.data).decode("ascii")
        return out


class ScreenshotSink:
    """Destination for captured screenshots."""

    async def store(
        self,
        data: bytes,
        *,
        name: str,
        kind: str = "page",
        url: str = "",
        execution_id: Optional[str] = None,
    ) -> ScreenshotRef:
        raise NotImplementedError


class MemoryScreenshotSink(ScreenshotSink):
    def __init__(self) -> None:
        self.refs: list[ScreenshotRef] = []

    async def store(self, data, *, name, kind="page", url="", execution_id=None):
        ref = ScreenshotRef(name=name, kind=kind, size=len(data), url=url, data=data)
        self.refs.append(ref)
        return ref


class FileScreenshotSink(ScreenshotSink):
    """Writes `<name>-<timestamp>.png` files; one sub-directory per execution."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.log = get_logger(__name__)

    async def store(self, data, *, name, kind="page", url="", execution_id=None):
        ts = _ts()
        out_path = self._build_path(name, ts, execution_id)
        await asyncio.to_thread(out_path.write_bytes, data)
        self.log.debug(f"Saved {kind} screenshot {out_path} ({len(data)} bytes)")
        return ScreenshotRef(name=name, kind=kind, size=len(data), url=url, ts=ts, path=out_path)

    def _build_path(self, base: str, ts: str, execution_id: Optional[str]) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in ("-", "_") else "_" for ch in base) or "screenshot"
        run_dir = self.root / execution_id if execution_id else self.root
        out_path = run_dir / f"{safe}-{ts}.png"
        out_path.parent.mkdir(parents=True, exist_ok=True)
        return out_path
