import os
import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent

TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY


def _resolve(path: str) -> str:
    p = Path(path)
    return str(p if p.is_absolute() else PROJECT_ROOT / p)


def load_config() -> dict:
    """Load configuration from .env and config.yaml. Env vars take precedence."""
    load_dotenv(PROJECT_ROOT / ".env")

    config_path = PROJECT_ROOT / "config.yaml"
    if config_path.exists():
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
    else:
        config = {}

    # Resolve database path relative to project root
    db_rel = os.environ.get("DATABASE_PATH") or config.get("database", {}).get(
        "path", "data/yt_explorer.db"
    )
    config["db_path"] = _resolve(db_rel)

    # Resolve log file path
    log_rel = config.get("logging", {}).get("file")
    if log_rel:
        config["log_file"] = _resolve(log_rel)
    else:
        config["log_file"] = None

    config["log_level"] = os.environ.get("LOG_LEVEL") or config.get("logging", {}).get(
        "level", "INFO"
    )

    return config


def get_youtube_config(config: dict) -> dict:
    """Extract YouTube Data API settings with defaults."""
    yt = config.get("youtube", {})
    return {
        "api_key": os.environ.get("YOUTUBE_API_KEY") or yt.get("api_key", ""),
        "channel_id": os.environ.get("YOUTUBE_CHANNEL_ID") or yt.get("channel_id", ""),
        "requests_per_minute": yt.get("requests_per_minute", 60),
        "max_retries": yt.get("max_retries", 3),
        "timeout": yt.get("timeout", 15),
    }


def get_download_config(config: dict) -> dict:
    """Extract offline-download settings with defaults."""
    dl = config.get("downloads", {})
    path = os.environ.get("DOWNLOADS_PATH") or dl.get("path", "downloads")
    return {
        "path": _resolve(path),
        "download_on_sync": _env_flag("DOWNLOAD_VIDEOS", dl.get("download_on_sync", False)),
        "yt_dlp_path": dl.get("yt_dlp_path", "yt-dlp"),
        "timeout_seconds": dl.get("timeout_seconds", 3600),
    }
