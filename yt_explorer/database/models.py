from __future__ import annotations

"""Record types stored by the Repository, plus explicit row mappers."""

import json
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Optional

SYNC_STATUSES = ("running", "completed", "failed")


@dataclass
class Channel:
    id: str
    title: str
    description: str = ""
    custom_url: Optional[str] = None
    published_at: Optional[str] = None
    thumbnail_url: Optional[str] = None
    subscriber_count: int = 0
    video_count: int = 0
    view_count: int = 0
    last_synced: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Video:
    id: str
    title: str
    published_at: str
    description: str = ""
    thumbnail_url: Optional[str] = None
    duration: Optional[str] = None  # ISO-8601, e.g. PT4M13S
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    tags: list[str] = field(default_factory=list)
    local_path: Optional[str] = None
    downloaded_at: Optional[str] = None
    last_updated: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Comment:
    id: str
    video_id: str
    author_display_name: str
    text_display: str
    text_original: str
    published_at: str
    updated_at: str
    author_profile_image_url: Optional[str] = None
    author_channel_id: Optional[str] = None
    like_count: int = 0
    parent_id: Optional[str] = None
    total_reply_count: int = 0

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SyncRun:
    id: int
    started_at: str
    status: str
    completed_at: Optional[str] = None
    videos_added: int = 0
    videos_updated: int = 0
    comments_added: int = 0
    error: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.status != "running"

    def to_dict(self) -> dict:
        return asdict(self)


# ----------------------------------------------------------------------
# Row mappers
# ----------------------------------------------------------------------

def _parse_tags(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return []
    if not isinstance(tags, list):
        return []
    return [str(t) for t in tags]


def channel_from_row(row: sqlite3.Row) -> Channel:
    return Channel(
        id=row["id"],
        title=row["title"],
        description=row["description"] or "",
        custom_url=row["custom_url"],
        published_at=row["published_at"],
        thumbnail_url=row["thumbnail_url"],
        subscriber_count=row["subscriber_count"] or 0,
        video_count=row["video_count"] or 0,
        view_count=row["view_count"] or 0,
        last_synced=row["last_synced"],
    )


def video_from_row(row: sqlite3.Row) -> Video:
    return Video(
        id=row["id"],
        title=row["title"],
        description=row["description"] or "",
        published_at=row["published_at"],
        thumbnail_url=row["thumbnail_url"],
        duration=row["duration"],
        view_count=row["view_count"] or 0,
        like_count=row["like_count"] or 0,
        comment_count=row["comment_count"] or 0,
        tags=_parse_tags(row["tags"]),
        local_path=row["local_path"] or None,
        downloaded_at=row["downloaded_at"],
        last_updated=row["last_updated"],
    )


def comment_from_row(row: sqlite3.Row) -> Comment:
    return Comment(
        id=row["id"],
        video_id=row["video_id"],
        author_display_name=row["author_display_name"],
        author_profile_image_url=row["author_profile_image_url"],
        author_channel_id=row["author_channel_id"],
        text_display=row["text_display"],
        text_original=row["text_original"],
        like_count=row["like_count"] or 0,
        published_at=row["published_at"],
        updated_at=row["updated_at"],
        parent_id=row["parent_id"],
        total_reply_count=row["total_reply_count"] or 0,
    )


def sync_run_from_row(row: sqlite3.Row) -> SyncRun:
    return SyncRun(
        id=row["id"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        status=row["status"],
        videos_added=row["videos_added"] or 0,
        videos_updated=row["videos_updated"] or 0,
        comments_added=row["comments_added"] or 0,
        error=row["error"],
    )
