from __future__ import annotations

"""Offline media downloads via the yt-dlp command line tool.

A download walks a cascade of format selectors from best to most permissive
quality. Each selector gets one yt-dlp run; the first run that leaves a file
named ``{video_id}-...`` in the downloads directory wins.
"""

import logging
import re
import subprocess
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from ..errors import DownloadCascadeExhausted

logger = logging.getLogger(__name__)

# (format selector, merge into mp4)
FORMAT_CASCADE: tuple[tuple[str, bool], ...] = (
    ("bestvideo[height<=1080]+bestaudio", True),
    ("best[height<=1080]", False),
    ("bestvideo[height<=720]+bestaudio", True),
    ("best[height<=720]", False),
    ("best", False),
)

MEDIA_EXTENSION = ".mp4"
PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp")
# Per-stream files yt-dlp leaves behind when a merge fails, e.g. "x.f137.mp4"
FRAGMENT_RE = re.compile(r"\.f\d+\.\w+$")
MAX_TITLE_LENGTH = 100
ACTIVE_STATUSES = ("queued", "downloading")


def is_leftover(filename: str) -> bool:
    """True for partial downloads and unmerged stream files."""
    return filename.endswith(PARTIAL_SUFFIXES) or FRAGMENT_RE.search(filename) is not None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def sanitize_title(title: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    """Make a title safe to embed in a filename."""
    return re.sub(r"[^A-Za-z0-9 -]", "_", title or "")[:max_length]


@dataclass
class DownloadTask:
    video_id: str
    title: str
    status: str = "queued"
    error: Optional[str] = None
    local_path: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class DownloadRegistry:
    """Thread-safe in-memory record of download tasks and failed ids.

    Returned tasks are copies; callers never hold a reference to the
    registry's own state.
    """

    def __init__(self):
        self._tasks: dict[str, DownloadTask] = {}
        self._failed: list[str] = []
        self._lock = threading.Lock()

    def queue(self, video_id: str, title: str) -> DownloadTask:
        with self._lock:
            task = DownloadTask(video_id=video_id, title=title)
            self._tasks[video_id] = task
            return DownloadTask(**asdict(task))

    def try_queue(self, video_id: str, title: str) -> Optional[DownloadTask]:
        """Queue unless a task for this id is already queued or downloading."""
        with self._lock:
            current = self._tasks.get(video_id)
            if current is not None and current.status in ACTIVE_STATUSES:
                return None
            task = DownloadTask(video_id=video_id, title=title)
            self._tasks[video_id] = task
            return DownloadTask(**asdict(task))

    def start(self, video_id: str, title: str) -> None:
        with self._lock:
            self._tasks[video_id] = DownloadTask(
                video_id=video_id, title=title, status="downloading", started_at=_now()
            )

    def _task(self, video_id: str) -> DownloadTask:
        # A clear may have dropped the entry while its download was running
        task = self._tasks.get(video_id)
        if task is None:
            task = DownloadTask(video_id=video_id, title="", status="downloading")
            self._tasks[video_id] = task
        return task

    def complete(self, video_id: str, local_path: str) -> None:
        with self._lock:
            task = self._task(video_id)
            task.status = "completed"
            task.local_path = local_path
            task.error = None
            task.completed_at = _now()
            if video_id in self._failed:
                self._failed.remove(video_id)

    def fail(self, video_id: str, error: Optional[str]) -> None:
        with self._lock:
            task = self._task(video_id)
            task.status = "failed"
            task.error = error
            task.completed_at = _now()
            if video_id not in self._failed:
                self._failed.append(video_id)

    def get(self, video_id: str) -> Optional[DownloadTask]:
        with self._lock:
            task = self._tasks.get(video_id)
            return DownloadTask(**asdict(task)) if task else None

    def all(self) -> list[DownloadTask]:
        with self._lock:
            return [DownloadTask(**asdict(t)) for t in self._tasks.values()]

    def failed_ids(self) -> list[str]:
        with self._lock:
            return list(self._failed)

    def clear(self, include_failed: bool = False) -> int:
        """Drop finished tasks; failed ones survive unless include_failed.

        Tasks still downloading are always kept. Returns the count removed.
        """
        with self._lock:
            before = len(self._tasks)
            keep = {"downloading"} if include_failed else {"downloading", "failed"}
            self._tasks = {
                vid: t for vid, t in self._tasks.items() if t.status in keep
            }
            if include_failed:
                self._failed.clear()
            return before - len(self._tasks)


class DownloadManager:
    """Downloads videos for offline viewing and tracks each download's status."""

    def __init__(
        self,
        downloads_path: str,
        yt_dlp_path: str = "yt-dlp",
        timeout: int = 3600,
        formats: tuple[tuple[str, bool], ...] = FORMAT_CASCADE,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        """
        Args:
            downloads_path: Directory media files are written to
            yt_dlp_path: yt-dlp executable
            timeout: Seconds allowed for a single yt-dlp run
            formats: Ordered (selector, merge) candidates
            runner: subprocess.run-compatible callable (swapped out in tests)
        """
        self.downloads_path = Path(downloads_path)
        self.yt_dlp_path = yt_dlp_path
        self.timeout = timeout
        self.formats = formats
        self.runner = runner
        self.registry = DownloadRegistry()
        self.downloads_path.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Downloading
    # ------------------------------------------------------------------

    def queue(self, video_id: str, title: str) -> DownloadTask:
        """Mark a video as waiting for a batch download."""
        return self.registry.queue(video_id, title)

    def download(self, video_id: str, title: str) -> Optional[str]:
        """Download a video. Returns the relative media path, or None on failure."""
        self.registry.start(video_id, title)
        logger.info(f"Downloading video: {title} ({video_id})")

        try:
            filename = self._run_cascade(video_id, title)
        except DownloadCascadeExhausted as e:
            logger.error(f"Download failed for {video_id}: {e.last_error}")
            self.registry.fail(video_id, e.last_error)
            return None

        relative_path = f"{self.downloads_path.name}/{filename}"
        self.registry.complete(video_id, relative_path)
        logger.info(f"Downloaded: {filename}")
        return relative_path

    def _run_cascade(self, video_id: str, title: str) -> str:
        self.downloads_path.mkdir(parents=True, exist_ok=True)
        template = str(self.downloads_path / f"{video_id}-{sanitize_title(title)}.%(ext)s")
        last_error: Optional[str] = None

        for attempt, (selector, merge) in enumerate(self.formats, 1):
            logger.debug(f"{video_id}: format {attempt}/{len(self.formats)} {selector}")
            self._remove_leftovers(video_id)
            error = self._attempt(video_id, selector, merge, template)
            if error is None:
                filename = self._find_file(video_id)
                if filename:
                    return filename
                error = "yt-dlp exited cleanly but no output file was found"
            logger.warning(f"{video_id}: format {selector} failed: {error}")
            last_error = error

        self._remove_leftovers(video_id)
        raise DownloadCascadeExhausted(video_id, last_error)

    def _attempt(self, video_id: str, selector: str, merge: bool, template: str) -> Optional[str]:
        """Run yt-dlp once. Returns an error message, or None if it exited 0."""
        cmd = [self.yt_dlp_path, "-f", selector]
        if merge:
            cmd += ["--merge-output-format", "mp4"]
        cmd += [
            "--no-playlist",
            "--no-warnings",
            "-o", template,
            f"https://www.youtube.com/watch?v={video_id}",
        ]

        try:
            result = self.runner(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            return f"yt-dlp timed out after {self.timeout}s"
        except OSError as e:
            return f"Could not run yt-dlp: {e}"

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            return stderr[-300:] or f"yt-dlp exited with code {result.returncode}"
        return None

    # ------------------------------------------------------------------
    # Files on disk
    # ------------------------------------------------------------------

    def _files_for(self, video_id: str) -> list[Path]:
        if not self.downloads_path.exists():
            return []
        return [
            p for p in sorted(self.downloads_path.iterdir())
            if p.name.startswith(f"{video_id}-") and p.is_file()
        ]

    def _find_file(self, video_id: str) -> Optional[str]:
        for path in self._files_for(video_id):
            if not is_leftover(path.name):
                return path.name
        return None

    def _remove_leftovers(self, video_id: str) -> None:
        for path in self._files_for(video_id):
            if is_leftover(path.name):
                try:
                    path.unlink()
                except OSError as e:
                    logger.warning(f"Could not remove {path.name}: {e}")

    def is_downloaded(self, video_id: str) -> bool:
        return self._find_file(video_id) is not None

    def resolve_path(self, video_id: str) -> Optional[Path]:
        filename = self._find_file(video_id)
        return self.downloads_path / filename if filename else None

    def delete(self, video_id: str) -> bool:
        """Remove a video's media file. Returns False if there was none."""
        path = self.resolve_path(video_id)
        if path is None:
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.error(f"Error deleting video {video_id}: {e}")
            return False
        logger.info(f"Deleted video: {path.name}")
        return True

    def count_downloaded(self) -> int:
        if not self.downloads_path.exists():
            return 0
        return sum(1 for p in self.downloads_path.iterdir() if p.name.endswith(MEDIA_EXTENSION))

    # ------------------------------------------------------------------
    # Task status
    # ------------------------------------------------------------------

    def status(self, video_id: str) -> Optional[DownloadTask]:
        return self.registry.get(video_id)

    def is_active(self, video_id: str) -> bool:
        """True while a download for this id is queued or running."""
        task = self.registry.get(video_id)
        return task is not None and task.status in ACTIVE_STATUSES

    def try_queue(self, video_id: str, title: str) -> Optional[DownloadTask]:
        """Queue a download unless one is already active. Returns None if it is."""
        return self.registry.try_queue(video_id, title)

    def list_all(self) -> list[DownloadTask]:
        return self.registry.all()

    def list_failed(self) -> list[str]:
        return self.registry.failed_ids()

    def clear_queue(self, include_failed: bool = False) -> int:
        return self.registry.clear(include_failed)
