from __future__ import annotations

"""Full-text search routes."""

from flask import Blueprint, current_app, jsonify, request

from ..app import get_repo

search_bp = Blueprint("search", __name__)


def _query_and_limit(default_limit: int):
    query = (request.args.get("q") or "").strip()
    try:
        limit = int(request.args.get("limit", default_limit))
    except ValueError:
        limit = default_limit
    return query, max(limit, 1)


@search_bp.route("/search/videos", methods=["GET"])
def search_videos():
    query, limit = _query_and_limit(50)
    if not query:
        return jsonify({"error": "Query parameter 'q' is required"}), 400
    videos = get_repo(current_app).search_videos(query, limit=limit)
    return jsonify([v.to_dict() for v in videos])


@search_bp.route("/search/comments", methods=["GET"])
def search_comments():
    query, limit = _query_and_limit(100)
    if not query:
        return jsonify({"error": "Query parameter 'q' is required"}), 400
    comments = get_repo(current_app).search_comments(query, limit=limit)
    return jsonify([c.to_dict() for c in comments])
