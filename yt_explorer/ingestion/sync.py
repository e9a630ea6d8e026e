from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ..database.repository import Repository
from ..errors import CommentsDisabledError, RemoteFetchError
from ..media.downloader import DownloadManager

logger = logging.getLogger(__name__)

UPDATE_BATCH_SIZE = 50

EventCallback = Callable[[dict], None]


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    run_id: int
    mode: str
    videos_added: int = 0
    videos_updated: int = 0
    comments_added: int = 0
    videos_downloaded: int = 0
    comment_failures: list[tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "videos_added": self.videos_added,
            "videos_updated": self.videos_updated,
            "comments_added": self.comments_added,
            "videos_downloaded": self.videos_downloaded,
            "comment_failures": [
                {"video_id": vid, "error": err} for vid, err in self.comment_failures
            ],
        }

    def __str__(self) -> str:
        return (
            f"Videos added: {self.videos_added}\n"
            f"Videos updated: {self.videos_updated}\n"
            f"Comments added: {self.comments_added}\n"
            f"Videos downloaded: {self.videos_downloaded}\n"
            f"Comment fetch failures: {len(self.comment_failures)}"
        )


class SyncOrchestrator:
    """Reconciles the local store with the remote channel.

    ``source`` is anything with get_channel, list_channel_videos,
    list_video_comments and get_videos_by_ids (see YouTubeClient).

    Not safe to run twice at once against the same database; callers keep a
    single in-progress guard.

    Usage:
        orchestrator = SyncOrchestrator(repo, client, "UCxxxx")
        result = orchestrator.full_sync()          # everything, all comments
        result = orchestrator.incremental_sync()   # new videos + fresh stats
    """

    def __init__(
        self,
        repo: Repository,
        source,
        channel_id: str,
        downloader: Optional[DownloadManager] = None,
        download_on_sync: bool = False,
        on_event: Optional[EventCallback] = None,
    ):
        self.repo = repo
        self.source = source
        self.channel_id = channel_id
        self.downloader = downloader
        self.download_on_sync = download_on_sync
        self.on_event = on_event

    def _emit(self, event: str, **data):
        if self.on_event is not None:
            self.on_event({"event": event, **data})

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def full_sync(self) -> SyncResult:
        """Fetch the channel, every video and every video's comments."""
        return self._run("full", self._full_steps)

    def incremental_sync(self) -> SyncResult:
        """Add new videos (with comments) and refresh stats of known ones."""
        return self._run("incremental", self._incremental_steps)

    def _run(self, mode: str, steps: Callable[[SyncResult], None]) -> SyncResult:
        run_id = self.repo.create_sync_run()
        result = SyncResult(run_id=run_id, mode=mode)
        logger.info(f"Starting {mode} sync (run {run_id})")
        self._emit("start", mode=mode, run_id=run_id)

        try:
            steps(result)
        except Exception as e:
            logger.error(f"{mode.capitalize()} sync failed: {e}")
            self.repo.update_sync_run(
                run_id,
                status="failed",
                completed_at=datetime.now(timezone.utc).isoformat(),
                videos_added=result.videos_added,
                videos_updated=result.videos_updated,
                comments_added=result.comments_added,
                error=str(e) or type(e).__name__,
            )
            self._emit("failed", run_id=run_id, error=str(e))
            raise

        self.repo.update_sync_run(
            run_id,
            status="completed",
            completed_at=datetime.now(timezone.utc).isoformat(),
            videos_added=result.videos_added,
            videos_updated=result.videos_updated,
            comments_added=result.comments_added,
        )
        logger.info(
            f"{mode.capitalize()} sync completed: {result.videos_added} new videos, "
            f"{result.videos_updated} updated, {result.comments_added} new comments"
        )
        if result.comment_failures:
            skipped = ", ".join(vid for vid, _ in result.comment_failures)
            logger.warning(
                f"Run {run_id}: comments skipped for "
                f"{len(result.comment_failures)} videos: {skipped}"
            )
        self._emit("completed", **result.to_dict())
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _full_steps(self, result: SyncResult):
        self._sync_channel()

        # 1. All videos, page by page
        for batch in self.source.list_channel_videos(self.channel_id):
            for video in batch:
                if self.repo.upsert_video(video):
                    result.videos_added += 1
                else:
                    result.videos_updated += 1
            self._emit(
                "videos_page",
                processed=result.videos_added + result.videos_updated,
                added=result.videos_added,
                updated=result.videos_updated,
            )

        # 2. Comments for every stored video
        videos = self.repo.list_videos()
        for i, video in enumerate(videos, 1):
            self._emit("comments", video=video.title, video_id=video.id, index=i, total=len(videos))
            self._sync_comments(video.id, result)

        # 3. Optional offline copies
        if self.download_on_sync:
            result.videos_downloaded = self.download_missing()

    def _incremental_steps(self, result: SyncResult):
        self._sync_channel()
        known_ids = self.repo.list_video_ids()
        known = set(known_ids)

        # 1. New videos, with their comments
        for batch in self.source.list_channel_videos(self.channel_id):
            for video in batch:
                if video.id in known:
                    continue
                if self.repo.upsert_video(video):
                    result.videos_added += 1
                    logger.info(f"New video found: {video.title}")
                    self._emit("new_video", video=video.title, video_id=video.id)
                    self._sync_comments(video.id, result)
                known.add(video.id)

        # 2. Fresh statistics for videos we already had
        if known_ids:
            logger.info(f"Updating statistics for {len(known_ids)} videos")
            for video in self.source.get_videos_by_ids(known_ids, batch_size=UPDATE_BATCH_SIZE):
                if not self.repo.upsert_video(video):
                    result.videos_updated += 1
            self._emit("stats_updated", updated=result.videos_updated)

        # 3. Optional offline copies
        if self.download_on_sync:
            result.videos_downloaded = self.download_missing()

    def _sync_channel(self):
        channel = self.source.get_channel(self.channel_id)
        self.repo.upsert_channel(channel)
        logger.info(f"Channel: {channel.title} ({channel.video_count} videos)")
        self._emit("channel", title=channel.title, video_count=channel.video_count)

    def _sync_comments(self, video_id: str, result: SyncResult):
        """Fetch one video's comment threads. Fetch errors stay local to the video."""
        added = 0
        try:
            for batch in self.source.list_video_comments(video_id):
                for comment in batch:
                    if self.repo.upsert_comment(comment):
                        added += 1
        except CommentsDisabledError:
            logger.info(f"Comments disabled for video {video_id}")
            result.comment_failures.append((video_id, "comments disabled"))
        except RemoteFetchError as e:
            logger.warning(f"Error fetching comments for {video_id} (run {result.run_id}): {e}")
            result.comment_failures.append((video_id, str(e)))
        finally:
            # Comments stored before a mid-listing failure still count
            result.comments_added += added
        logger.debug(f"{video_id}: {added} new comments")

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def download_missing(self, limit: Optional[int] = None) -> int:
        """Download every video that has no local media yet. Returns the success count."""
        if self.downloader is None:
            logger.warning("Download requested but no downloader configured")
            return 0

        videos = self.repo.list_videos_missing_local_media(limit)
        if not videos:
            logger.info("All videos already downloaded")
            return 0

        logger.info(f"Found {len(videos)} videos to download")
        for video in videos:
            self.downloader.queue(video.id, video.title)

        downloaded = 0
        for i, video in enumerate(videos, 1):
            self._emit("download", video=video.title, video_id=video.id, index=i, total=len(videos))
            try:
                local_path = self.downloader.download(video.id, video.title)
                if local_path and self.repo.update_local_path(video.id, local_path):
                    downloaded += 1
            except Exception:
                logger.exception(f"Download of {video.id} failed")

        logger.info(f"Downloaded {downloaded}/{len(videos)} videos")
        return downloaded
