"""
Capture package for browserflow.
Handles screenshot sinks and file downloads produced by steps.
"""

from .screenshot import FileScreenshotSink, MemoryScreenshotSink, ScreenshotRef, ScreenshotSink
from .download import DownloadResult, handle_download

__all__ = [
    "ScreenshotRef",
    "ScreenshotSink",
    "FileScreenshotSink",
    "MemoryScreenshotSink",
    "DownloadResult",
    "handle_download",
]
