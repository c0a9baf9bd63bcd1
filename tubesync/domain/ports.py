from __future__ import annotations

from typing import Any, Dict, Iterable, List, Protocol

from .entities import AddResult, CandidateTrack, Playlist, SourceItem


class SourceLister(Protocol):
    """Port for the catalog a playlist is read from (YouTube).

    Pagination and transport concerns stay inside the implementation; callers see an
    ordered stream of items.
    """

    def list_items(self, playlist_id: str) -> Iterable[SourceItem]:
        """Iterate the playlist's items in playlist order."""


class DestinationCatalog(Protocol):
    """Port for the catalog tracks are matched against and written to (Spotify)."""

    def current_user(self) -> Dict[str, Any]:
        """Return the credential owner's profile: id, display_name, email."""

    def current_user_id(self) -> str:
        """Return the id of the user owning the bearer credential."""

    def search(self, query: str) -> List[CandidateTrack]:
        """Return candidate tracks for a query; an empty list when nothing matches."""

    def create_playlist(self, owner_id: str, name: str, is_public: bool = False) -> Playlist:
        """Create a new playlist owned by owner_id."""

    def add_tracks_batch(self, playlist_id: str, track_uris: List[str]) -> AddResult:
        """Append up to the provider's maximum batch size of track uris."""
