import logging
import re
from typing import Iterable, Optional
from urllib.parse import parse_qs, urlparse

import requests

from tubesync.domain.entities import SourceItem
from tubesync.domain.errors import NotFound, PermanentFailure, RateLimited, TemporaryFailure
from tubesync.domain.ports import SourceLister

logger = logging.getLogger(__name__)

YOUTUBE_API = "https://www.googleapis.com/youtube/v3"

_PLAYLIST_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{10,}$")


def extract_playlist_id(value: str) -> Optional[str]:
    """Return the playlist id from a YouTube URL (its `list` parameter) or a bare id."""
    value = (value or "").strip()
    if not value:
        return None

    parsed = urlparse(value)
    if parsed.scheme and parsed.netloc:
        ids = parse_qs(parsed.query).get("list")
        return ids[0] if ids else None

    if _PLAYLIST_ID_PATTERN.match(value):
        return value
    return None


class YouTubeProvider(SourceLister):
    """Reads playlist items from the YouTube Data API v3."""

    def __init__(self,
                 api_key: str,
                 session: Optional[requests.Session] = None,
                 page_size: int = 50,
                 timeout: float = 15):
        """Initialize the provider.

        Args:
            api_key: YouTube Data API key
            session: Optional requests session (tests inject a mock)
            page_size: Items per page, at most 50
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise PermanentFailure("YouTube API key is required")
        self.api_key = api_key
        self._session = session or requests.Session()
        self.page_size = min(max(1, page_size), 50)
        self.timeout = timeout

    def _get_page(self, playlist_id: str, page_token: Optional[str]) -> dict:
        params = {
            "part": "snippet",
            "playlistId": playlist_id,
            "maxResults": self.page_size,
            "key": self.api_key,
        }
        if page_token:
            params["pageToken"] = page_token

        try:
            response = self._session.get(f"{YOUTUBE_API}/playlistItems", params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TemporaryFailure(f"Failed to fetch playlist {playlist_id}: {e}")

        status = response.status_code
        if status == 404:
            raise NotFound(f"Playlist {playlist_id} not found")
        if status == 429:
            retry_after = response.headers.get("Retry-After", "1")
            try:
                retry_after_ms = int(float(retry_after) * 1000)
            except ValueError:
                retry_after_ms = 1000
            raise RateLimited(retry_after_ms=retry_after_ms)
        if status in (400, 401, 403):
            raise PermanentFailure(f"YouTube API rejected request ({status}): {response.text}")
        if status >= 400:
            raise TemporaryFailure(f"YouTube API error ({status}): {response.text}")

        try:
            return response.json()
        except ValueError as e:
            raise TemporaryFailure(f"Invalid response from YouTube API: {e}")

    def list_items(self, playlist_id: str) -> Iterable[SourceItem]:
        """Iterate playlist items across all pages.

        Entries without a video id (deleted or private videos) are skipped.
        """
        page_token = None
        page = 0
        while True:
            data = self._get_page(playlist_id, page_token)
            items = data.get("items")
            if not items:
                break

            page += 1
            logger.debug(f"Fetched page {page} of playlist {playlist_id}: {len(items)} items")

            for item in items:
                snippet = item.get("snippet") or {}
                video_id = (snippet.get("resourceId") or {}).get("videoId")
                if not video_id:
                    continue
                yield SourceItem(
                    id=video_id,
                    title=snippet.get("title", ""),
                    channel_title=snippet.get("videoOwnerChannelTitle") or "",
                )

            page_token = data.get("nextPageToken")
            if not page_token:
                break
