import logging
from typing import Any, Dict, List, Optional

import requests
import spotipy
from spotipy.exceptions import SpotifyException

from tubesync.domain.entities import AddResult, CandidateArtist, CandidateTrack, Playlist
from tubesync.domain.errors import NotFound, PermanentFailure, RateLimited, TemporaryFailure
from tubesync.domain.ports import DestinationCatalog

logger = logging.getLogger(__name__)

MAX_TRACKS_PER_REQUEST = 100


class SpotifyProvider(DestinationCatalog):
    """Spotify Web API adapter for searching tracks and writing playlists.

    Only consumes a bearer token; obtaining and refreshing it is the caller's concern.
    """

    def __init__(self,
                 access_token: str,
                 search_limit: int = 15,
                 client: Optional[Any] = None,
                 requests_timeout: int = 15):
        """Initialize Spotify provider.

        Args:
            access_token: Spotify bearer token
            search_limit: Number of search results per query
            client: Optional pre-built spotipy client (tests inject a mock)
            requests_timeout: HTTP timeout in seconds
        """
        if not access_token and client is None:
            raise PermanentFailure("Spotify access token is required")
        self.access_token = access_token
        self._search_limit = search_limit
        self._client = client or spotipy.Spotify(auth=access_token, requests_timeout=requests_timeout)
        self._user: Optional[Dict[str, Any]] = None

    def _translate_error(self, error: Exception, operation: str) -> Exception:
        """Map spotipy/requests exceptions to domain errors."""
        if isinstance(error, SpotifyException):
            status = error.http_status
            if status == 429:
                headers = error.headers or {}
                try:
                    retry_after = int(headers.get('Retry-After', 1))
                except (TypeError, ValueError):
                    retry_after = 1
                return RateLimited(retry_after_ms=retry_after * 1000)
            if status in (400, 401, 403):
                return PermanentFailure(f"Spotify rejected {operation} ({status}): {error.msg}")
            if status == 404:
                return NotFound(f"Spotify {operation}: {error.msg}")
            return TemporaryFailure(f"Spotify {operation} failed ({status}): {error.msg}")
        if isinstance(error, requests.RequestException):
            return TemporaryFailure(f"Spotify {operation} failed: {error}")
        return error

    def _track_to_candidate(self, spotify_track: Dict[str, Any]) -> Optional[CandidateTrack]:
        track_id = spotify_track.get('id')
        uri = spotify_track.get('uri') or (f"spotify:track:{track_id}" if track_id else None)
        if not uri:
            return None

        artists = [
            CandidateArtist(name=a.get('name', ''))
            for a in spotify_track.get('artists') or []
            if a and a.get('name')
        ]
        return CandidateTrack(
            id=track_id or uri,
            name=spotify_track.get('name', ''),
            uri=uri,
            artists=artists,
        )

    def current_user(self) -> Dict[str, Any]:
        """Profile of the token's owner: id, display_name and email (cached).

        email is None unless the token carries the user-read-email scope.
        """
        if self._user is None:
            try:
                profile = self._client.current_user()
            except Exception as e:
                raise self._translate_error(e, "current user lookup")
            self._user = {
                'id': profile['id'],
                'display_name': profile.get('display_name'),
                'email': profile.get('email'),
            }
        return self._user

    def current_user_id(self) -> str:
        return self.current_user()['id']

    def search(self, query: str) -> List[CandidateTrack]:
        """Search tracks. Returns an empty list when nothing matches."""
        if not query or not query.strip():
            return []

        try:
            results = self._client.search(query, type='track', limit=self._search_limit)
        except Exception as e:
            raise self._translate_error(e, "search")

        items = ((results or {}).get('tracks') or {}).get('items') or []
        candidates = []
        for item in items:
            if not item:
                continue
            candidate = self._track_to_candidate(item)
            if candidate:
                candidates.append(candidate)

        logger.debug(f"Search {query!r}: {len(candidates)} results")
        return candidates

    def create_playlist(self, owner_id: str, name: str, is_public: bool = False) -> Playlist:
        """Create a new playlist. Existing playlists with the same name are not reused."""
        try:
            result = self._client.user_playlist_create(owner_id, name, public=is_public)
        except Exception as e:
            raise self._translate_error(e, "playlist creation")

        return Playlist(
            id=result['id'],
            name=result.get('name', name),
            owner_id=(result.get('owner') or {}).get('id', owner_id),
            external_url=(result.get('external_urls') or {}).get('spotify', ''),
            is_public=is_public,
        )

    def add_tracks_batch(self, playlist_id: str, track_uris: List[str]) -> AddResult:
        """Add up to 100 tracks to a playlist.

        Raises:
            ValueError: If more than 100 uris are given
            TemporaryFailure: If the reply carries no snapshot id
        """
        if not track_uris:
            return AddResult(added=0)
        if len(track_uris) > MAX_TRACKS_PER_REQUEST:
            raise ValueError(f"Spotify accepts at most {MAX_TRACKS_PER_REQUEST} tracks per request")

        try:
            result = self._client.playlist_add_items(playlist_id, track_uris)
        except Exception as e:
            raise self._translate_error(e, "add tracks")

        if not result or 'snapshot_id' not in result:
            logger.warning(f"Unexpected response adding tracks to {playlist_id}: {result}")
            raise TemporaryFailure(f"Spotify did not confirm adding {len(track_uris)} tracks to {playlist_id}")
        return AddResult(added=len(track_uris))
