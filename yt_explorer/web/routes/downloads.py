from __future__ import annotations

"""Download task registry routes."""

from flask import Blueprint, current_app, jsonify, request

from ...errors import NotFoundError
from ..app import get_downloader

downloads_bp = Blueprint("downloads", __name__)


@downloads_bp.route("/downloads", methods=["GET"])
def list_downloads():
    downloader = get_downloader(current_app)
    return jsonify({
        "tasks": [t.to_dict() for t in downloader.list_all()],
        "failed": downloader.list_failed(),
        "downloaded_count": downloader.count_downloaded(),
    })


@downloads_bp.route("/downloads/<video_id>", methods=["GET"])
def get_download(video_id):
    task = get_downloader(current_app).status(video_id)
    if task is None:
        raise NotFoundError(f"No download task for {video_id}")
    return jsonify(task.to_dict())


@downloads_bp.route("/downloads/clear", methods=["POST"])
def clear_downloads():
    """Drop finished tasks. Body: {"include_failed": bool}"""
    data = request.get_json(silent=True) or {}
    removed = get_downloader(current_app).clear_queue(bool(data.get("include_failed", False)))
    return jsonify({"status": "cleared", "removed": removed})
