from __future__ import annotations

import json
import re
import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from ..errors import NotFoundError, PersistenceError
from .connection import init_database
from .models import (
    SYNC_STATUSES,
    Channel,
    Comment,
    SyncRun,
    Video,
    channel_from_row,
    comment_from_row,
    sync_run_from_row,
    video_from_row,
)

logger = logging.getLogger(__name__)

SYNC_RUN_FIELDS = {
    "completed_at", "status", "videos_added", "videos_updated", "comments_added", "error",
}


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Repository:
    """All database CRUD and search operations.

    One Repository (and so one SQLite connection) per thread. Writers are
    serialized by SQLite itself; each write method runs in its own
    ``BEGIN IMMEDIATE`` transaction so the base row and its FTS projection
    (maintained by triggers) commit or roll back together.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = init_database(self.db_path)
        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.conn
        try:
            if not conn.in_transaction:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    def upsert_channel(self, channel: Channel) -> None:
        """Store the channel snapshot, replacing whatever was there before."""
        data = channel.to_dict()
        data["last_synced"] = data["last_synced"] or utcnow()
        with self._transaction() as conn:
            # Only one tracked channel: drop any snapshot with a different id
            conn.execute("DELETE FROM channel WHERE id != ?", (channel.id,))
            conn.execute(
                """INSERT INTO channel (id, title, description, custom_url, published_at,
                                        thumbnail_url, subscriber_count, video_count,
                                        view_count, last_synced)
                   VALUES (:id, :title, :description, :custom_url, :published_at,
                           :thumbnail_url, :subscriber_count, :video_count,
                           :view_count, :last_synced)
                   ON CONFLICT(id) DO UPDATE SET
                       title = excluded.title,
                       description = excluded.description,
                       custom_url = excluded.custom_url,
                       published_at = excluded.published_at,
                       thumbnail_url = excluded.thumbnail_url,
                       subscriber_count = excluded.subscriber_count,
                       video_count = excluded.video_count,
                       view_count = excluded.view_count,
                       last_synced = excluded.last_synced""",
                data,
            )

    def get_channel(self) -> Optional[Channel]:
        row = self.conn.execute("SELECT * FROM channel LIMIT 1").fetchone()
        return channel_from_row(row) if row else None

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    def upsert_video(self, video: Video) -> bool:
        """Insert or update a video. Returns True if the id was not stored before.

        local_path/downloaded_at are only written on first insert; a metadata
        update never touches them.
        """
        data = video.to_dict()
        data["tags"] = json.dumps(video.tags)
        data["last_updated"] = data["last_updated"] or utcnow()
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM videos WHERE id = ?", (video.id,)
            ).fetchone()
            conn.execute(
                """INSERT INTO videos (id, title, description, published_at, thumbnail_url,
                                       duration, view_count, like_count, comment_count, tags,
                                       local_path, downloaded_at, last_updated)
                   VALUES (:id, :title, :description, :published_at, :thumbnail_url,
                           :duration, :view_count, :like_count, :comment_count, :tags,
                           :local_path, :downloaded_at, :last_updated)
                   ON CONFLICT(id) DO UPDATE SET
                       title = excluded.title,
                       description = excluded.description,
                       published_at = excluded.published_at,
                       thumbnail_url = excluded.thumbnail_url,
                       duration = excluded.duration,
                       view_count = excluded.view_count,
                       like_count = excluded.like_count,
                       comment_count = excluded.comment_count,
                       tags = excluded.tags,
                       last_updated = excluded.last_updated""",
                data,
            )
        return existing is None

    def update_local_path(self, video_id: str, local_path: Optional[str]) -> bool:
        """Record (or with None, clear) the downloaded media file for a video.

        Returns False when the video does not exist.
        """
        downloaded_at = utcnow() if local_path else None
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE videos SET local_path = ?, downloaded_at = ? WHERE id = ?",
                (local_path, downloaded_at, video_id),
            )
        if cur.rowcount == 0:
            logger.warning(f"Cannot set local path: video {video_id} not found")
            return False
        return True

    def get_video(self, video_id: str) -> Optional[Video]:
        row = self.conn.execute("SELECT * FROM videos WHERE id = ?", (video_id,)).fetchone()
        return video_from_row(row) if row else None

    def require_video(self, video_id: str) -> Video:
        video = self.get_video(video_id)
        if video is None:
            raise NotFoundError(f"Video not found: {video_id}")
        return video

    def list_videos(self, limit: Optional[int] = None, offset: Optional[int] = None) -> list[Video]:
        """Videos ordered newest first."""
        sql = "SELECT * FROM videos ORDER BY published_at DESC, id"
        params: list = []
        if limit is not None or offset is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit if limit is not None else -1, offset or 0])
        rows = self.conn.execute(sql, params).fetchall()
        return [video_from_row(r) for r in rows]

    def list_video_ids(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT id FROM videos ORDER BY published_at DESC, id"
        ).fetchall()
        return [r["id"] for r in rows]

    def count_videos(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) as cnt FROM videos").fetchone()
        return row["cnt"]

    def list_videos_missing_local_media(self, limit: Optional[int] = None) -> list[Video]:
        sql = """SELECT * FROM videos
                 WHERE local_path IS NULL OR local_path = ''
                 ORDER BY published_at DESC, id"""
        params: list = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self.conn.execute(sql, params).fetchall()
        return [video_from_row(r) for r in rows]

    def delete_video(self, video_id: str) -> bool:
        """Delete a video; its comments go with it (ON DELETE CASCADE)."""
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def upsert_comment(self, comment: Comment) -> bool:
        """Insert or update a comment. Returns True if the id was not stored before.

        Author fields and threading (video_id, parent_id) are fixed at insert.
        """
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM comments WHERE id = ?", (comment.id,)
            ).fetchone()
            conn.execute(
                """INSERT INTO comments (id, video_id, author_display_name,
                                         author_profile_image_url, author_channel_id,
                                         text_display, text_original, like_count,
                                         published_at, updated_at, parent_id,
                                         total_reply_count)
                   VALUES (:id, :video_id, :author_display_name,
                           :author_profile_image_url, :author_channel_id,
                           :text_display, :text_original, :like_count,
                           :published_at, :updated_at, :parent_id,
                           :total_reply_count)
                   ON CONFLICT(id) DO UPDATE SET
                       text_display = excluded.text_display,
                       text_original = excluded.text_original,
                       like_count = excluded.like_count,
                       updated_at = excluded.updated_at,
                       total_reply_count = excluded.total_reply_count""",
                comment.to_dict(),
            )
        return existing is None

    def list_comments_for_video(self, video_id: str, limit: Optional[int] = None) -> list[Comment]:
        sql = "SELECT * FROM comments WHERE video_id = ? ORDER BY published_at DESC, id"
        params: list = [video_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self.conn.execute(sql, params).fetchall()
        return [comment_from_row(r) for r in rows]

    def count_comments(self, video_id: Optional[str] = None) -> int:
        if video_id is None:
            row = self.conn.execute("SELECT COUNT(*) as cnt FROM comments").fetchone()
        else:
            row = self.conn.execute(
                "SELECT COUNT(*) as cnt FROM comments WHERE video_id = ?", (video_id,)
            ).fetchone()
        return row["cnt"]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    @staticmethod
    def _prepare_fts_query(query: str) -> str:
        """Convert a natural language query into an FTS5 OR query.

        'quantum tunneling' -> '"quantum" OR "tunneling"'
        Each term is quoted so words like AND/NOT are matched literally.
        Returns '' when nothing searchable is left.
        """
        terms = []
        for w in query.split():
            cleaned = re.sub(r"[^\w]", "", w)
            if cleaned:
                terms.append(f'"{cleaned}"')
        return " OR ".join(terms)

    def search_videos(self, query: str, limit: int = 50) -> list[Video]:
        """Full-text search over title, description and tags, best match first."""
        fts_query = self._prepare_fts_query(query)
        if not fts_query:
            return []
        rows = self.conn.execute(
            """SELECT v.* FROM videos_fts
               JOIN videos v ON v.rowid = videos_fts.rowid
               WHERE videos_fts MATCH ?
               ORDER BY videos_fts.rank, v.rowid
               LIMIT ?""",
            (fts_query, limit),
        ).fetchall()
        return [video_from_row(r) for r in rows]

    def search_comments(self, query: str, limit: int = 100) -> list[Comment]:
        """Full-text search over comment author and text, best match first."""
        fts_query = self._prepare_fts_query(query)
        if not fts_query:
            return []
        rows = self.conn.execute(
            """SELECT c.* FROM comments_fts
               JOIN comments c ON c.rowid = comments_fts.rowid
               WHERE comments_fts MATCH ?
               ORDER BY comments_fts.rank, c.rowid
               LIMIT ?""",
            (fts_query, limit),
        ).fetchall()
        return [comment_from_row(r) for r in rows]

    def rebuild_search_index(self) -> None:
        """Regenerate both FTS projections from the base tables."""
        with self._transaction() as conn:
            conn.execute("INSERT INTO videos_fts(videos_fts) VALUES ('rebuild')")
            conn.execute("INSERT INTO comments_fts(comments_fts) VALUES ('rebuild')")

    # ------------------------------------------------------------------
    # Sync runs
    # ------------------------------------------------------------------

    def create_sync_run(self) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                "INSERT INTO sync_runs (started_at, status) VALUES (?, 'running')",
                (utcnow(),),
            )
        return cur.lastrowid

    def update_sync_run(self, run_id: int, **fields) -> None:
        """Update a running sync run. Closed runs are immutable."""
        unknown = set(fields) - SYNC_RUN_FIELDS
        if unknown:
            raise ValueError(f"Unknown sync run fields: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in SYNC_STATUSES:
            raise ValueError(f"Invalid sync status: {fields['status']}")
        if not fields:
            return

        assignments = ", ".join(f"{name} = :{name}" for name in sorted(fields))
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT status FROM sync_runs WHERE id = ?", (run_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Sync run not found: {run_id}")
            if row["status"] != "running":
                raise PersistenceError(f"Sync run {run_id} is already {row['status']}")
            conn.execute(
                f"UPDATE sync_runs SET {assignments} WHERE id = :run_id",
                {**fields, "run_id": run_id},
            )

    def get_sync_run(self, run_id: int) -> Optional[SyncRun]:
        row = self.conn.execute("SELECT * FROM sync_runs WHERE id = ?", (run_id,)).fetchone()
        return sync_run_from_row(row) if row else None

    def get_latest_sync_run(self) -> Optional[SyncRun]:
        row = self.conn.execute("SELECT * FROM sync_runs ORDER BY id DESC LIMIT 1").fetchone()
        return sync_run_from_row(row) if row else None

    def list_sync_runs(self, limit: int = 10) -> list[SyncRun]:
        rows = self.conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [sync_run_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        stats = {}
        stats["videos"] = self.count_videos()
        row = self.conn.execute(
            "SELECT COUNT(*) as cnt FROM videos WHERE local_path IS NOT NULL AND local_path != ''"
        ).fetchone()
        stats["downloaded_videos"] = row["cnt"]
        stats["comments"] = self.count_comments()
        row = self.conn.execute(
            "SELECT COUNT(*) as cnt FROM comments WHERE parent_id IS NOT NULL"
        ).fetchone()
        stats["replies"] = row["cnt"]
        latest = self.get_latest_sync_run()
        stats["latest_sync"] = latest.to_dict() if latest else None
        return stats
