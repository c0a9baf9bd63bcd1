from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


@dataclass(frozen=True)
class SourceItem:
    """Video entry of a source playlist, as supplied by the lister."""

    id: str
    title: str
    channel_title: str = ""


@dataclass(frozen=True)
class ParsedTitle:
    """Best-guess artist/track pair derived from a raw video title."""

    artist: Optional[str]
    track: str
    raw: str


@dataclass(frozen=True)
class CandidateArtist:
    name: str


@dataclass(frozen=True)
class CandidateTrack:
    """Search result returned by the destination catalog."""

    id: str
    name: str
    uri: str
    artists: List[CandidateArtist] = field(default_factory=list)

    @property
    def primary_artist(self) -> Optional[str]:
        return self.artists[0].name if self.artists else None


@dataclass(frozen=True)
class Playlist:
    """Destination playlist created for a transfer run."""

    id: str
    name: str
    owner_id: str = ""
    external_url: str = ""
    is_public: bool = False


@dataclass(frozen=True)
class AddResult:
    """Result of a batch add operation to a playlist."""

    added: int
    errors: int = 0


class SkipReason(str, Enum):
    """Why a source item produced no destination track."""

    EMPTY_TRACK_NAME = "EMPTY_TRACK_NAME"
    NO_CANDIDATE_ABOVE_THRESHOLD = "NO_CANDIDATE_ABOVE_THRESHOLD"


@dataclass(frozen=True)
class Matched:
    candidate: CandidateTrack
    score: float
    query: Optional[str] = None


@dataclass(frozen=True)
class Skipped:
    reason: SkipReason


MatchResult = Union[Matched, Skipped]


@dataclass(frozen=True)
class SkippedItem:
    """A skipped source item together with its original title."""

    title: str
    reason: SkipReason


@dataclass(frozen=True)
class TransferOutcome:
    """Aggregate result of one transfer run."""

    playlist_id: Optional[str]
    playlist_url: Optional[str]
    added_uris: List[str] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)

    @property
    def added_count(self) -> int:
        return len(self.added_uris)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)
