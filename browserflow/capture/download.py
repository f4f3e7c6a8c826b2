# browserflow/capture/download.py
from __future__ import annotations

"""Browser downloads: wait for the download event, save it locally, describe it."""

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from browserflow.utils.logger import get_logger

log = get_logger(__name__)

# mimetypes misses a few of these on minimal systems
_MIME_OVERRIDES = {
    ".csv": "text/csv",
    ".json": "application/json",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
}


def guess_mime_type(filename: str) -> str:
    suffix = Path(filename).suffix.lower()
    if suffix in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[suffix]
    mime, _ = mimetypes.guess_type(filename)
    return mime or "application/octet-stream"


@dataclass
class DownloadResult:
    filename: str
    size: int
    path: str
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {"filename": self.filename, "size": self.size, "path": self.path, "mimeType": self.mime_type}


def _safe_name(name: str) -> str:
    base = Path(name).name
    return "".join(ch if ch.isalnum() or ch in ("-", "_", ".") else "_" for ch in base) or "download"


async def handle_download(
    page: Any,
    trigger: Callable[[], Awaitable[Any]],
    target_dir: Path,
    *,
    filename: Optional[str] = None,
    timeout_ms: int = 30000,
) -> DownloadResult:
    """Run `trigger` while waiting for a download, then save it under `target_dir`."""
    async with page.expect_download(timeout=timeout_ms) as info:
        await trigger()
    download = await info.value

    name = _safe_name(filename or download.suggested_filename)
    target_dir.mkdir(parents=True, exist_ok=True)
    out_path = target_dir / name
    await download.save_as(str(out_path))
    size = out_path.stat().st_size
    log.debug(f"Downloaded {name} ({size} bytes) -> {out_path}")
    return DownloadResult(filename=name, size=size, path=str(out_path), mime_type=guess_mime_type(name))
