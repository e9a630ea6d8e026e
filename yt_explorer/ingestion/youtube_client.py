from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterator, Optional

import requests

from ..database.models import Channel, Comment, Video
from ..errors import CommentsDisabledError, NotFoundError, RemoteFetchError
from ..utils.rate_limiter import RateLimiter
from ..utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

API_BASE_URL = "https://www.googleapis.com/youtube/v3"

SEARCH_PAGE_SIZE = 50
COMMENT_PAGE_SIZE = 100
DETAILS_BATCH_SIZE = 50


def _int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _best_thumbnail(snippet: dict) -> str:
    thumbs = snippet.get("thumbnails", {})
    for size in ("high", "medium", "default"):
        url = thumbs.get(size, {}).get("url")
        if url:
            return url
    return ""


class YouTubeClient:
    """Reads channel, video and comment metadata from the YouTube Data API v3.

    Listings are generators that yield one page (a list of records) at a
    time. They follow nextPageToken strictly in order and cannot be resumed
    halfway; call the method again to restart from the first page.
    """

    def __init__(self, api_key: str, requests_per_minute: int = 60,
                 max_retries: int = 3, timeout: int = 15,
                 session: Optional[requests.Session] = None):
        if not api_key:
            raise ValueError("YouTube API key required. Set YOUTUBE_API_KEY in .env")
        self.api_key = api_key
        self.max_retries = max_retries
        self.timeout = timeout
        self.session = session or requests.Session()
        self.rate_limiter = RateLimiter(requests_per_minute)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    @retry_with_backoff(max_retries=3, base_delay=2.0)
    def _get(self, resource: str, params: dict) -> dict:
        """GET one API resource, translating failures into RemoteFetchError."""
        self.rate_limiter.wait_if_needed()
        url = f"{API_BASE_URL}/{resource}"
        try:
            resp = self.session.get(
                url, params={**params, "key": self.api_key}, timeout=self.timeout
            )
        except requests.RequestException as e:
            # Connection/timeout names are kept so the retry decorator sees them
            raise RemoteFetchError(f"{type(e).__name__} calling {resource}: {e}") from e

        if resp.status_code >= 400:
            raise self._error_from_response(resource, resp)

        try:
            return resp.json()
        except ValueError as e:
            raise RemoteFetchError(f"Malformed response from {resource}") from e

    @staticmethod
    def _error_from_response(resource: str, resp: requests.Response) -> RemoteFetchError:
        reason = None
        message = resp.text[:200]
        try:
            error = resp.json().get("error", {})
            message = error.get("message", message)
            errors = error.get("errors") or [{}]
            reason = errors[0].get("reason")
        except (ValueError, AttributeError):
            pass

        retry_after = resp.headers.get("retry-after")
        exc_cls = CommentsDisabledError if reason == "commentsDisabled" else RemoteFetchError
        return exc_cls(
            f"{resource} failed ({resp.status_code}): {message}",
            status_code=resp.status_code,
            reason=reason,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    def get_channel(self, channel_id: str) -> Channel:
        data = self._get("channels", {"part": "snippet,statistics", "id": channel_id})
        items = data.get("items") or []
        if not items:
            raise NotFoundError(f"Channel not found: {channel_id}")

        item = items[0]
        snippet = item.get("snippet", {})
        stats = item.get("statistics", {})
        return Channel(
            id=item["id"],
            title=snippet.get("title", ""),
            description=snippet.get("description", ""),
            custom_url=snippet.get("customUrl"),
            published_at=snippet.get("publishedAt", ""),
            thumbnail_url=_best_thumbnail(snippet),
            subscriber_count=_int(stats.get("subscriberCount")),
            video_count=_int(stats.get("videoCount")),
            view_count=_int(stats.get("viewCount")),
            last_synced=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    def list_channel_videos(self, channel_id: str) -> Iterator[list[Video]]:
        """Yield the channel's videos newest first, one search page at a time."""
        page_token = None
        fetched_at = datetime.now(timezone.utc).isoformat()

        while True:
            params = {
                "part": "snippet",
                "channelId": channel_id,
                "maxResults": SEARCH_PAGE_SIZE,
                "order": "date",
                "type": "video",
            }
            if page_token:
                params["pageToken"] = page_token
            data = self._get("search", params)

            video_ids = [
                item["id"]["videoId"]
                for item in data.get("items", [])
                if item.get("id", {}).get("videoId")
            ]
            if video_ids:
                yield self._get_video_details(video_ids, fetched_at)

            page_token = data.get("nextPageToken")
            if not page_token:
                break

    def _get_video_details(self, video_ids: list[str], fetched_at: str) -> list[Video]:
        data = self._get(
            "videos",
            {"part": "snippet,contentDetails,statistics", "id": ",".join(video_ids)},
        )
        return [self._parse_video(item, fetched_at) for item in data.get("items", [])]

    @staticmethod
    def _parse_video(item: dict, fetched_at: str) -> Video:
        snippet = item.get("snippet", {})
        stats = item.get("statistics", {})
        return Video(
            id=item["id"],
            title=snippet.get("title", ""),
            description=snippet.get("description", ""),
            published_at=snippet.get("publishedAt", ""),
            thumbnail_url=_best_thumbnail(snippet),
            duration=item.get("contentDetails", {}).get("duration", ""),
            view_count=_int(stats.get("viewCount")),
            like_count=_int(stats.get("likeCount")),
            comment_count=_int(stats.get("commentCount")),
            tags=list(snippet.get("tags") or []),
            last_updated=fetched_at,
        )

    def get_videos_by_ids(self, video_ids: list[str],
                          batch_size: int = DETAILS_BATCH_SIZE) -> list[Video]:
        """Fetch current details for known videos, batch_size ids per request."""
        batch_size = max(1, min(batch_size, DETAILS_BATCH_SIZE))
        fetched_at = datetime.now(timezone.utc).isoformat()
        videos: list[Video] = []
        for i in range(0, len(video_ids), batch_size):
            videos.extend(self._get_video_details(video_ids[i:i + batch_size], fetched_at))
        return videos

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def list_video_comments(self, video_id: str) -> Iterator[list[Comment]]:
        """Yield a video's comment threads page by page, replies after their parent.

        Raises CommentsDisabledError when the video has comments turned off.
        """
        page_token = None

        while True:
            params = {
                "part": "snippet,replies",
                "videoId": video_id,
                "maxResults": COMMENT_PAGE_SIZE,
                "textFormat": "plainText",
            }
            if page_token:
                params["pageToken"] = page_token
            data = self._get("commentThreads", params)

            try:
                comments = self._parse_threads(data, video_id)
            except (KeyError, TypeError, AttributeError) as e:
                raise RemoteFetchError(
                    f"Malformed commentThreads response for {video_id}: {e!r}"
                ) from e

            if comments:
                yield comments

            page_token = data.get("nextPageToken")
            if not page_token:
                break

    def _parse_threads(self, data: dict, video_id: str) -> list[Comment]:
        comments: list[Comment] = []
        for thread in data.get("items", []):
            snippet = thread.get("snippet", {})
            top = snippet.get("topLevelComment")
            if not top:
                continue
            comments.append(self._parse_comment(
                top, video_id, reply_count=_int(snippet.get("totalReplyCount"))
            ))
            for reply in thread.get("replies", {}).get("comments", []):
                comments.append(self._parse_comment(reply, video_id, parent_id=top["id"]))
        return comments

    @staticmethod
    def _parse_comment(item: dict, video_id: str, parent_id: Optional[str] = None,
                       reply_count: int = 0) -> Comment:
        snippet = item.get("snippet", {})
        return Comment(
            id=item["id"],
            video_id=video_id,
            author_display_name=snippet.get("authorDisplayName", ""),
            author_profile_image_url=snippet.get("authorProfileImageUrl", ""),
            author_channel_id=snippet.get("authorChannelId", {}).get("value", ""),
            text_display=snippet.get("textDisplay", ""),
            text_original=snippet.get("textOriginal", ""),
            like_count=_int(snippet.get("likeCount")),
            published_at=snippet.get("publishedAt", ""),
            updated_at=snippet.get("updatedAt", ""),
            parent_id=parent_id,
            # Replies never carry a reply count of their own
            total_reply_count=reply_count if parent_id is None else 0,
        )
