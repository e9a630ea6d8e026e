from __future__ import annotations

"""Exception types shared by the storage, sync and download layers."""

from typing import Optional


class YTExplorerError(Exception):
    """Base class for all application errors."""


class NotFoundError(YTExplorerError):
    """A channel, video or comment does not exist."""


class RemoteFetchError(YTExplorerError):
    """The remote metadata source failed (network, quota, bad response)."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 reason: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.retry_after = retry_after


class CommentsDisabledError(RemoteFetchError):
    """Comments are turned off for a video."""


class PersistenceError(YTExplorerError):
    """A database write failed."""


class DownloadCascadeExhausted(YTExplorerError):
    """Every candidate format failed for a video."""

    def __init__(self, video_id: str, last_error: Optional[str]):
        super().__init__(f"All formats failed for {video_id}: {last_error}")
        self.video_id = video_id
        self.last_error = last_error
