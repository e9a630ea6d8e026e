from __future__ import annotations

"""Flask application factory for the YT Explorer API."""

import logging
import threading
from typing import Callable, Optional

from flask import Flask, current_app, g, jsonify, send_from_directory

from ..config import get_download_config, get_youtube_config, load_config
from ..database.repository import Repository
from ..errors import NotFoundError, YTExplorerError
from ..ingestion.sync import SyncOrchestrator
from ..ingestion.youtube_client import YouTubeClient
from ..media.downloader import DownloadManager

logger = logging.getLogger(__name__)

EXTENSION_KEY = "yt_explorer"


class JobGuard:
    """Allows one background job of a kind at a time."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def start(self, target: Callable, *args, inline: bool = False) -> bool:
        """Run target in a thread (or inline). Returns False if already running."""
        if not self._lock.acquire(blocking=False):
            return False

        def runner():
            try:
                target(*args)
            except Exception:
                logger.exception(f"Background {self.name} job failed")
            finally:
                self._lock.release()

        if inline:
            runner()
        else:
            threading.Thread(target=runner, name=f"ytx-{self.name}", daemon=True).start()
        return True


def create_app(config: dict = None, source=None,
               downloader: Optional[DownloadManager] = None) -> Flask:
    """Create and configure the Flask application.

    ``source`` and ``downloader`` default to a YouTubeClient and
    DownloadManager built from config; tests pass fakes instead.
    """
    if config is None:
        config = load_config()

    app = Flask(__name__)

    yt_cfg = get_youtube_config(config)
    dl_cfg = get_download_config(config)

    app.config["DB_PATH"] = config["db_path"]
    app.config["CHANNEL_ID"] = yt_cfg["channel_id"]
    app.config["DOWNLOADS_PATH"] = dl_cfg["path"]
    app.config["DOWNLOAD_ON_SYNC"] = dl_cfg["download_on_sync"]
    app.config["RUN_JOBS_INLINE"] = config.get("run_jobs_inline", False)

    if downloader is None:
        downloader = DownloadManager(
            dl_cfg["path"],
            yt_dlp_path=dl_cfg["yt_dlp_path"],
            timeout=dl_cfg["timeout_seconds"],
        )

    app.extensions[EXTENSION_KEY] = {
        "youtube_config": yt_cfg,
        "source": source,
        "downloader": downloader,
        "sync_guard": JobGuard("sync"),
        "download_guard": JobGuard("download-all"),
    }

    from .routes.videos import videos_bp
    from .routes.search import search_bp
    from .routes.sync import sync_bp
    from .routes.downloads import downloads_bp
    from .routes.status import status_bp

    app.register_blueprint(videos_bp, url_prefix="/api")
    app.register_blueprint(search_bp, url_prefix="/api")
    app.register_blueprint(sync_bp, url_prefix="/api")
    app.register_blueprint(downloads_bp, url_prefix="/api")
    app.register_blueprint(status_bp, url_prefix="/api")

    @app.route("/downloads/<path:filename>")
    def serve_download(filename):
        return send_from_directory(app.config["DOWNLOADS_PATH"], filename)

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(YTExplorerError)
    def handle_app_error(e):
        logger.error(f"{type(e).__name__}: {e}")
        return jsonify({"error": str(e)}), 500

    @app.teardown_appcontext
    def close_repo(exc):
        repo = g.pop("repo", None)
        if repo is not None:
            repo.close()

    return app


def _state(app: Flask) -> dict:
    return app.extensions[EXTENSION_KEY]


def get_repo(app: Flask) -> Repository:
    """Get the Repository for the current app context (one connection per context)."""
    if "repo" not in g:
        g.repo = Repository(app.config["DB_PATH"])
    return g.repo


def get_downloader(app: Flask) -> DownloadManager:
    return _state(app)["downloader"]


def get_source(app: Flask):
    """Get or lazily create the remote metadata source."""
    state = _state(app)
    if state["source"] is None:
        yt_cfg = state["youtube_config"]
        state["source"] = YouTubeClient(
            yt_cfg["api_key"],
            requests_per_minute=yt_cfg["requests_per_minute"],
            max_retries=yt_cfg["max_retries"],
            timeout=yt_cfg["timeout"],
        )
    return state["source"]


def get_guard(app: Flask, name: str) -> JobGuard:
    return _state(app)[f"{name}_guard"]


def build_orchestrator(app: Flask, repo: Repository, for_sync: bool = True) -> SyncOrchestrator:
    """Orchestrator for a background job. Download-only jobs skip the API client."""
    return SyncOrchestrator(
        repo,
        get_source(app) if for_sync else None,
        app.config["CHANNEL_ID"],
        downloader=get_downloader(app),
        download_on_sync=app.config["DOWNLOAD_ON_SYNC"],
    )


def run_job(name: str, target: Callable, *args) -> bool:
    """Start a guarded background job for the current app."""
    app = current_app._get_current_object()
    return get_guard(app, name).start(target, app, *args, inline=app.config["RUN_JOBS_INLINE"])
