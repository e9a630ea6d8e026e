from __future__ import annotations

"""Sync status and trigger routes."""

import logging

from flask import Blueprint, current_app, jsonify, request

from ...database.repository import Repository
from ..app import build_orchestrator, get_guard, get_repo, run_job

logger = logging.getLogger(__name__)

sync_bp = Blueprint("sync", __name__)


def _run_sync(app, full: bool):
    repo = Repository(app.config["DB_PATH"])
    try:
        orchestrator = build_orchestrator(app, repo)
        if full:
            orchestrator.full_sync()
        else:
            orchestrator.incremental_sync()
    finally:
        repo.close()


@sync_bp.route("/sync/status", methods=["GET"])
def sync_status():
    latest = get_repo(current_app).get_latest_sync_run()
    return jsonify({
        "is_syncing": get_guard(current_app, "sync").running,
        "latest_sync": latest.to_dict() if latest else None,
    })


@sync_bp.route("/sync/start", methods=["POST"])
def start_sync():
    """Trigger a sync in the background. Body: {"full": bool}"""
    data = request.get_json(silent=True) or {}
    full = bool(data.get("full", False))

    if not current_app.config["CHANNEL_ID"]:
        return jsonify({"error": "No channel configured (YOUTUBE_CHANNEL_ID)"}), 400
    if not run_job("sync", _run_sync, full):
        return jsonify({"error": "Sync already in progress"}), 409

    mode = "full" if full else "incremental"
    logger.info(f"{mode.capitalize()} sync started from API")
    return jsonify({"status": "started", "mode": mode}), 202
