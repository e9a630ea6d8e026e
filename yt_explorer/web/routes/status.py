from __future__ import annotations

"""Health and status routes."""

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

from ..app import get_downloader, get_guard, get_repo

status_bp = Blueprint("status", __name__)


@status_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()})


@status_bp.route("/status", methods=["GET"])
def get_status():
    """Get library counts plus job state as JSON."""
    stats = get_repo(current_app).get_stats()
    stats["is_syncing"] = get_guard(current_app, "sync").running
    stats["downloaded_files"] = get_downloader(current_app).count_downloaded()
    return jsonify(stats)
