"""Tests for the Repository class: upserts, listing, search and sync runs."""
from __future__ import annotations

import pytest

from conftest import make_channel, make_comment, make_video
from yt_explorer.errors import NotFoundError, PersistenceError


class TestChannel:
    def test_get_channel_empty(self, repo):
        assert repo.get_channel() is None

    def test_upsert_channel_overwrites_in_place(self, repo):
        repo.upsert_channel(make_channel(subscriber_count=1))
        repo.upsert_channel(make_channel(title="Renamed", subscriber_count=2))
        ch = repo.get_channel()
        assert ch.title == "Renamed"
        assert ch.subscriber_count == 2
        assert ch.last_synced

    def test_only_one_channel_row(self, repo):
        repo.upsert_channel(make_channel(id="UC_one"))
        repo.upsert_channel(make_channel(id="UC_two"))
        count = repo.conn.execute("SELECT COUNT(*) as cnt FROM channel").fetchone()["cnt"]
        assert count == 1
        assert repo.get_channel().id == "UC_two"


class TestVideos:
    def test_upsert_reports_new_then_existing(self, repo):
        assert repo.upsert_video(make_video("v1")) is True
        assert repo.upsert_video(make_video("v1")) is False
        assert repo.count_videos() == 1

    def test_upsert_is_idempotent(self, repo):
        video = make_video("v1", tags=["a", "b"])
        repo.upsert_video(video)
        first = repo.get_video("v1")
        repo.upsert_video(video)
        second = repo.get_video("v1")
        assert first.to_dict() == second.to_dict()

    def test_upsert_overwrites_counts(self, repo):
        repo.upsert_video(make_video("v1", view_count=10, like_count=1))
        repo.upsert_video(make_video("v1", view_count=99, like_count=7, title="New title"))
        video = repo.get_video("v1")
        assert video.view_count == 99
        assert video.like_count == 7
        assert video.title == "New title"

    def test_tags_round_trip_in_order(self, repo):
        repo.upsert_video(make_video("v1", tags=["zeta", "alpha", "mid"]))
        assert repo.get_video("v1").tags == ["zeta", "alpha", "mid"]

    def test_missing_tags_read_as_empty_list(self, repo):
        repo.upsert_video(make_video("v1"))
        repo.conn.execute("UPDATE videos SET tags = NULL WHERE id = 'v1'")
        repo.conn.commit()
        assert repo.get_video("v1").tags == []

    def test_metadata_update_preserves_local_path(self, repo):
        repo.upsert_video(make_video("v1"))
        assert repo.update_local_path("v1", "downloads/v1-Video.mp4") is True

        repo.upsert_video(make_video("v1", view_count=5000))

        video = repo.get_video("v1")
        assert video.local_path == "downloads/v1-Video.mp4"
        assert video.downloaded_at is not None
        assert video.view_count == 5000

    def test_update_local_path_missing_video(self, repo):
        assert repo.update_local_path("nope", "downloads/nope.mp4") is False

    def test_clear_local_path(self, repo):
        repo.upsert_video(make_video("v1"))
        repo.update_local_path("v1", "downloads/v1-Video.mp4")
        repo.update_local_path("v1", None)
        video = repo.get_video("v1")
        assert video.local_path is None
        assert video.downloaded_at is None

    def test_require_video_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.require_video("missing")

    def test_list_videos_newest_first(self, seeded_repo):
        ids = [v.id for v in seeded_repo.list_videos()]
        assert ids == ["vid_a", "vid_b", "vid_c"]
        assert seeded_repo.list_video_ids() == ids

    def test_list_videos_pagination(self, seeded_repo):
        page = seeded_repo.list_videos(limit=1, offset=1)
        assert [v.id for v in page] == ["vid_b"]
        assert [v.id for v in seeded_repo.list_videos(offset=2)] == ["vid_c"]

    def test_list_videos_missing_local_media(self, seeded_repo):
        seeded_repo.update_local_path("vid_b", "downloads/vid_b-Quick.mp4")
        missing = seeded_repo.list_videos_missing_local_media()
        assert [v.id for v in missing] == ["vid_a", "vid_c"]
        assert len(seeded_repo.list_videos_missing_local_media(limit=1)) == 1

    def test_delete_video_cascades_to_comments(self, seeded_repo):
        assert seeded_repo.count_comments("vid_a") == 2
        assert seeded_repo.delete_video("vid_a") is True
        assert seeded_repo.get_video("vid_a") is None
        assert seeded_repo.count_comments("vid_a") == 0
        assert seeded_repo.count_comments() == 1

    def test_delete_missing_video(self, repo):
        assert repo.delete_video("missing") is False


class TestComments:
    def test_upsert_reports_new_then_existing(self, seeded_repo):
        comment = make_comment("c9", "vid_c")
        assert seeded_repo.upsert_comment(comment) is True
        assert seeded_repo.upsert_comment(comment) is False

    def test_upsert_updates_text_and_likes(self, seeded_repo):
        seeded_repo.upsert_comment(make_comment(
            "c2", "vid_b", text="Edited: added chili and lemon", like_count=42,
        ))
        comment = seeded_repo.list_comments_for_video("vid_b")[0]
        assert comment.text_original == "Edited: added chili and lemon"
        assert comment.like_count == 42

    def test_comment_requires_existing_video(self, repo):
        with pytest.raises(PersistenceError):
            repo.upsert_comment(make_comment("c1", "no_such_video"))

    def test_reply_threading(self, seeded_repo):
        comments = {c.id: c for c in seeded_repo.list_comments_for_video("vid_a")}
        assert comments["c1"].parent_id is None
        assert comments["c1"].total_reply_count == 1
        assert comments["c1.r1"].is_reply
        assert comments["c1.r1"].parent_id == "c1"
        assert comments["c1.r1"].total_reply_count == 0

    def test_list_comments_newest_first_with_limit(self, seeded_repo):
        comments = seeded_repo.list_comments_for_video("vid_a")
        assert [c.id for c in comments] == ["c1.r1", "c1"]
        assert len(seeded_repo.list_comments_for_video("vid_a", limit=1)) == 1


class TestSearch:
    def test_search_videos_by_title(self, seeded_repo):
        results = seeded_repo.search_videos("sourdough")
        assert [v.id for v in results] == ["vid_a"]

    def test_search_videos_by_description_and_tags(self, seeded_repo):
        assert [v.id for v in seeded_repo.search_videos("garlic")] == ["vid_b"]
        assert [v.id for v in seeded_repo.search_videos("technique")] == ["vid_c"]

    def test_search_terms_are_ored(self, seeded_repo):
        ids = {v.id for v in seeded_repo.search_videos("sourdough pasta")}
        assert ids == {"vid_a", "vid_b"}

    def test_search_comments(self, seeded_repo):
        results = seeded_repo.search_comments("hydration")
        assert [c.id for c in results] == ["c1.r1"]

    def test_search_comments_by_author(self, seeded_repo):
        assert [c.id for c in seeded_repo.search_comments("Baker")] == ["c1.r1"]

    def test_search_reflects_updates(self, seeded_repo):
        seeded_repo.upsert_video(make_video(
            "vid_a", title="Rye Loaf", description="Dense and dark",
            published_at="2024-03-01T00:00:00Z", tags=[],
        ))
        assert seeded_repo.search_videos("sourdough") == []
        assert [v.id for v in seeded_repo.search_videos("rye")] == ["vid_a"]

    def test_search_reflects_deletes(self, seeded_repo):
        seeded_repo.delete_video("vid_a")
        assert seeded_repo.search_videos("sourdough") == []
        assert seeded_repo.search_comments("sourdough") == []

    def test_search_survives_local_path_update(self, seeded_repo):
        seeded_repo.update_local_path("vid_a", "downloads/vid_a-x.mp4")
        assert [v.id for v in seeded_repo.search_videos("sourdough")] == ["vid_a"]

    def test_empty_and_punctuation_queries(self, seeded_repo):
        assert seeded_repo.search_videos("") == []
        assert seeded_repo.search_videos("!!! ???") == []
        assert seeded_repo.search_comments("   ") == []

    def test_fts_operators_are_literal(self, seeded_repo):
        # Matched as the plain word "and", not parsed as an operator
        ids = {v.id for v in seeded_repo.search_videos("AND")}
        assert ids == {"vid_a", "vid_b"}
        assert [v.id for v in seeded_repo.search_videos('sourdough" OR (')] == ["vid_a"]

    def test_search_limit(self, repo):
        for i in range(5):
            repo.upsert_video(make_video(f"v{i}", title=f"Chocolate cake {i}"))
        assert len(repo.search_videos("chocolate", limit=3)) == 3

    def test_rebuild_search_index(self, seeded_repo):
        seeded_repo.rebuild_search_index()
        assert [v.id for v in seeded_repo.search_videos("sourdough")] == ["vid_a"]
        assert [c.id for c in seeded_repo.search_comments("chili")] == ["c2"]


class TestSyncRuns:
    def test_create_sync_run(self, repo):
        run_id = repo.create_sync_run()
        run = repo.get_sync_run(run_id)
        assert run.status == "running"
        assert run.completed_at is None
        assert run.started_at

    def test_ids_increase_and_latest_is_highest(self, repo):
        first = repo.create_sync_run()
        second = repo.create_sync_run()
        assert second > first
        assert repo.get_latest_sync_run().id == second
        assert [r.id for r in repo.list_sync_runs()] == [second, first]

    def test_latest_when_none(self, repo):
        assert repo.get_latest_sync_run() is None

    def test_complete_run(self, repo):
        run_id = repo.create_sync_run()
        repo.update_sync_run(
            run_id, status="completed", completed_at="2024-01-01T00:05:00Z",
            videos_added=3, videos_updated=1, comments_added=12,
        )
        run = repo.get_sync_run(run_id)
        assert run.status == "completed"
        assert run.videos_added == 3
        assert run.comments_added == 12
        assert run.is_closed

    def test_closed_run_is_immutable(self, repo):
        run_id = repo.create_sync_run()
        repo.update_sync_run(run_id, status="failed", error="quota exceeded")
        with pytest.raises(PersistenceError):
            repo.update_sync_run(run_id, status="completed")
        assert repo.get_sync_run(run_id).error == "quota exceeded"

    def test_unknown_field_rejected(self, repo):
        run_id = repo.create_sync_run()
        with pytest.raises(ValueError):
            repo.update_sync_run(run_id, started_at="2020-01-01")

    def test_invalid_status_rejected(self, repo):
        run_id = repo.create_sync_run()
        with pytest.raises(ValueError):
            repo.update_sync_run(run_id, status="paused")

    def test_missing_run(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_sync_run(999, status="completed")


class TestStats:
    def test_get_stats(self, seeded_repo):
        seeded_repo.update_local_path("vid_c", "downloads/vid_c-k.mp4")
        seeded_repo.create_sync_run()
        stats = seeded_repo.get_stats()
        assert stats["videos"] == 3
        assert stats["downloaded_videos"] == 1
        assert stats["comments"] == 3
        assert stats["replies"] == 1
        assert stats["latest_sync"]["status"] == "running"
