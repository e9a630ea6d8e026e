"""Shared test fixtures for YT Explorer tests."""
from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from yt_explorer.database.connection import init_database
from yt_explorer.database.models import Channel, Comment, Video
from yt_explorer.database.repository import Repository
from yt_explorer.errors import CommentsDisabledError, RemoteFetchError
from yt_explorer.media.downloader import DownloadManager


# ----------------------------------------------------------------------
# Record builders
# ----------------------------------------------------------------------

def make_channel(**overrides) -> Channel:
    data = {
        "id": "UC_test123",
        "title": "Test Cooking Channel",
        "description": "Weeknight recipes",
        "custom_url": "@testcooking",
        "published_at": "2015-03-01T00:00:00Z",
        "thumbnail_url": "https://example.com/channel.jpg",
        "subscriber_count": 100000,
        "video_count": 2,
        "view_count": 5000000,
    }
    data.update(overrides)
    return Channel(**data)


def make_video(video_id: str, **overrides) -> Video:
    data = {
        "id": video_id,
        "title": f"Video {video_id}",
        "description": f"Description for {video_id}",
        "published_at": "2024-01-01T00:00:00Z",
        "thumbnail_url": f"https://example.com/{video_id}.jpg",
        "duration": "PT4M13S",
        "view_count": 100,
        "like_count": 10,
        "comment_count": 1,
        "tags": ["cooking"],
        "last_updated": "2024-01-05T00:00:00Z",
    }
    data.update(overrides)
    return Video(**data)


def make_comment(comment_id: str, video_id: str, **overrides) -> Comment:
    text = overrides.pop("text", f"Comment {comment_id}")
    data = {
        "id": comment_id,
        "video_id": video_id,
        "author_display_name": "Viewer",
        "author_profile_image_url": "https://example.com/avatar.jpg",
        "author_channel_id": "UC_viewer",
        "text_display": text,
        "text_original": text,
        "like_count": 0,
        "published_at": "2024-01-02T00:00:00Z",
        "updated_at": "2024-01-02T00:00:00Z",
    }
    data.update(overrides)
    return Comment(**data)


# ----------------------------------------------------------------------
# Fakes
# ----------------------------------------------------------------------

class FakeSource:
    """In-memory stand-in for YouTubeClient.

    videos: listing order (newest first); page_size controls batching.
    comments: video_id -> list of Comment (replies after their parent).
    disabled: video ids whose comments are turned off.
    failing_comments: video_id -> error message raised as RemoteFetchError.
    """

    def __init__(self, channel=None, videos=None, comments=None, disabled=(),
                 failing_comments=None, page_size=50, channel_error=None):
        self.channel = channel or make_channel()
        self.videos = list(videos or [])
        self.comments = dict(comments or {})
        self.disabled = set(disabled)
        self.failing_comments = dict(failing_comments or {})
        self.page_size = page_size
        self.channel_error = channel_error
        self.detail_requests: list[list[str]] = []
        self.comment_requests: list[str] = []

    def get_channel(self, channel_id):
        if self.channel_error is not None:
            raise self.channel_error
        return self.channel

    def list_channel_videos(self, channel_id):
        for i in range(0, len(self.videos), self.page_size):
            yield list(self.videos[i:i + self.page_size])

    def get_videos_by_ids(self, video_ids, batch_size=50):
        by_id = {v.id: v for v in self.videos}
        result = []
        for i in range(0, len(video_ids), batch_size):
            batch = video_ids[i:i + batch_size]
            self.detail_requests.append(batch)
            result.extend(by_id[vid] for vid in batch if vid in by_id)
        return result

    def list_video_comments(self, video_id):
        self.comment_requests.append(video_id)
        if video_id in self.disabled:
            raise CommentsDisabledError(
                f"commentThreads failed (403): comments disabled for {video_id}",
                status_code=403,
                reason="commentsDisabled",
            )
        if video_id in self.failing_comments:
            raise RemoteFetchError(self.failing_comments[video_id], status_code=500)
        comments = self.comments.get(video_id, [])
        if comments:
            yield list(comments)


class FakeYtDlp:
    """subprocess.run replacement for yt-dlp.

    The first ``fail_first`` invocations exit non-zero; later ones write the
    output file named by the -o template (unless ``write_file`` is False).
    """

    def __init__(self, fail_first: int = 0, write_file: bool = True, ext: str = "mp4"):
        self.fail_first = fail_first
        self.write_file = write_file
        self.ext = ext
        self.calls: list[list[str]] = []

    @property
    def formats_tried(self) -> list[str]:
        return [cmd[cmd.index("-f") + 1] for cmd in self.calls]

    def __call__(self, cmd, capture_output=True, text=True, timeout=None):
        self.calls.append(list(cmd))
        if len(self.calls) <= self.fail_first:
            return subprocess.CompletedProcess(
                cmd, 1, stdout="", stderr="ERROR: Requested format is not available"
            )
        if self.write_file:
            template = cmd[cmd.index("-o") + 1]
            Path(template.replace("%(ext)s", self.ext)).write_bytes(b"\x00\x00")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------

@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database with full schema + migrations."""
    db_path = str(tmp_path / "test.db")
    conn = init_database(db_path)
    conn.close()
    return db_path


@pytest.fixture
def repo(tmp_db):
    """Create a Repository backed by the temp database."""
    r = Repository(tmp_db)
    yield r
    r.close()


@pytest.fixture
def seeded_repo(repo):
    """Repository with a channel, three videos and a small comment thread."""
    repo.upsert_channel(make_channel())
    repo.upsert_video(make_video(
        "vid_a", title="Perfect Sourdough Bread", published_at="2024-03-01T00:00:00Z",
        description="Long fermentation and a hot dutch oven", tags=["bread", "baking"],
    ))
    repo.upsert_video(make_video(
        "vid_b", title="Quick Pasta Sauce", published_at="2024-02-01T00:00:00Z",
        description="Tomatoes, garlic and basil", tags=["pasta"],
    ))
    repo.upsert_video(make_video(
        "vid_c", title="Knife Skills Basics", published_at="2024-01-01T00:00:00Z",
        description="Dicing onions safely", tags=["technique"],
    ))
    repo.upsert_comment(make_comment(
        "c1", "vid_a", text="My sourdough finally rose!", like_count=5, total_reply_count=1,
    ))
    repo.upsert_comment(make_comment(
        "c1.r1", "vid_a", text="Congrats, what hydration?", parent_id="c1",
        author_display_name="Baker", published_at="2024-01-03T00:00:00Z",
    ))
    repo.upsert_comment(make_comment("c2", "vid_b", text="Added chili flakes, great"))
    return repo


@pytest.fixture
def fake_source():
    """Two-video channel: A has a comment and a reply, B has comments disabled."""
    return FakeSource(
        videos=[
            make_video("A", title="Video A", published_at="2024-02-01T00:00:00Z"),
            make_video("B", title="Video B", published_at="2024-01-01T00:00:00Z"),
        ],
        comments={
            "A": [
                make_comment("A.c1", "A", text="First!", total_reply_count=1),
                make_comment("A.c1.r1", "A", text="Second", parent_id="A.c1"),
            ],
        },
        disabled={"B"},
    )


@pytest.fixture
def fake_ytdlp():
    return FakeYtDlp()


@pytest.fixture
def downloads_dir(tmp_path):
    d = tmp_path / "downloads"
    d.mkdir()
    return d


@pytest.fixture
def downloader(downloads_dir, fake_ytdlp):
    """DownloadManager whose yt-dlp runs are simulated."""
    return DownloadManager(str(downloads_dir), runner=fake_ytdlp)


@pytest.fixture
def flask_app(tmp_db, downloads_dir, fake_source, downloader):
    """Create a Flask test app with all routes registered and jobs run inline."""
    from yt_explorer.web.app import create_app

    config = {
        "db_path": tmp_db,
        "youtube": {"api_key": "test-key", "channel_id": "UC_test123"},
        "downloads": {"path": str(downloads_dir)},
        "run_jobs_inline": True,
    }
    app = create_app(config, source=fake_source, downloader=downloader)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(flask_app):
    """Flask test client."""
    return flask_app.test_client()
