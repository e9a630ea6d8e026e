from __future__ import annotations

"""Channel, video, comment and per-video download routes."""

import io
import logging
import threading

from flask import Blueprint, Response, current_app, jsonify, request

from ...database.repository import Repository
from ...errors import NotFoundError
from ...utils.csv_export import comments_csv_filename, write_comments_csv
from ..app import build_orchestrator, get_downloader, get_repo, run_job

logger = logging.getLogger(__name__)

videos_bp = Blueprint("videos", __name__)


def _int_arg(name: str, default=None):
    value = request.args.get(name)
    if value is None or value == "":
        return default
    try:
        return max(int(value), 0)
    except ValueError:
        return default


@videos_bp.route("/channel", methods=["GET"])
def get_channel():
    channel = get_repo(current_app).get_channel()
    if channel is None:
        raise NotFoundError("Channel not synced yet")
    return jsonify(channel.to_dict())


@videos_bp.route("/videos", methods=["GET"])
def list_videos():
    """Paginated video list, newest first."""
    repo = get_repo(current_app)
    limit = _int_arg("limit", 50)
    offset = _int_arg("offset", 0)
    videos = repo.list_videos(limit=limit, offset=offset)
    return jsonify({
        "videos": [v.to_dict() for v in videos],
        "total": repo.count_videos(),
    })


@videos_bp.route("/videos/<video_id>", methods=["GET"])
def get_video(video_id):
    video = get_repo(current_app).require_video(video_id)
    return jsonify(video.to_dict())


@videos_bp.route("/videos/<video_id>/comments", methods=["GET"])
def list_comments(video_id):
    repo = get_repo(current_app)
    comments = repo.list_comments_for_video(video_id, limit=_int_arg("limit"))
    return jsonify([c.to_dict() for c in comments])


@videos_bp.route("/videos/<video_id>/comments/export", methods=["GET"])
def export_comments(video_id):
    """Download a video's comments as a CSV attachment."""
    repo = get_repo(current_app)
    video = repo.require_video(video_id)
    comments = repo.list_comments_for_video(video_id)

    buf = io.StringIO()
    write_comments_csv(buf, comments)

    filename = comments_csv_filename(video.title)
    return Response(
        buf.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ----------------------------------------------------------------------
# Offline downloads
# ----------------------------------------------------------------------

def _download_one(app, video_id: str, title: str):
    downloader = get_downloader(app)
    local_path = downloader.download(video_id, title)
    if local_path:
        repo = Repository(app.config["DB_PATH"])
        try:
            repo.update_local_path(video_id, local_path)
        finally:
            repo.close()


def _download_all(app, limit):
    repo = Repository(app.config["DB_PATH"])
    try:
        build_orchestrator(app, repo, for_sync=False).download_missing(limit)
    finally:
        repo.close()


@videos_bp.route("/videos/<video_id>/download", methods=["POST"])
def download_video(video_id):
    """Start downloading one video in the background."""
    repo = get_repo(current_app)
    downloader = get_downloader(current_app)
    video = repo.require_video(video_id)

    if video.local_path and downloader.is_downloaded(video_id):
        return jsonify({"status": "already_downloaded", "local_path": video.local_path})

    task = downloader.try_queue(video_id, video.title)
    if task is None:
        return jsonify({"error": "Download already in progress"}), 409

    app = current_app._get_current_object()
    if app.config["RUN_JOBS_INLINE"]:
        _download_one(app, video_id, video.title)
    else:
        threading.Thread(
            target=_download_one, args=(app, video_id, video.title), daemon=True
        ).start()
    return jsonify({"status": "started", "task": task.to_dict()}), 202


@videos_bp.route("/videos/<video_id>/download", methods=["DELETE"])
def delete_download(video_id):
    """Remove a video's local media file and clear its pointer."""
    repo = get_repo(current_app)
    repo.require_video(video_id)
    deleted = get_downloader(current_app).delete(video_id)
    repo.update_local_path(video_id, None)
    return jsonify({"status": "deleted" if deleted else "not_downloaded"})


@videos_bp.route("/videos/download-all", methods=["POST"])
def download_all():
    """Download every video without local media. Body: {"limit": int}"""
    data = request.get_json(silent=True) or {}
    limit = data.get("limit")
    if limit is not None and (not isinstance(limit, int) or limit < 1):
        return jsonify({"error": "limit must be a positive integer"}), 400

    if not run_job("download", _download_all, limit):
        return jsonify({"error": "Batch download already in progress"}), 409
    return jsonify({"status": "started", "limit": limit}), 202
