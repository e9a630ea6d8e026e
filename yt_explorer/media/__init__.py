from __future__ import annotations

from .downloader import (
    FORMAT_CASCADE,
    DownloadManager,
    DownloadRegistry,
    DownloadTask,
    sanitize_title,
)

__all__ = [
    "FORMAT_CASCADE",
    "DownloadManager",
    "DownloadRegistry",
    "DownloadTask",
    "sanitize_title",
]
