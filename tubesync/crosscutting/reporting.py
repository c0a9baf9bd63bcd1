import json
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from tubesync.domain.entities import SkipReason, TransferOutcome


class EventType(str, Enum):
    """Kinds of progress events emitted during a transfer."""

    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


class TrackStatus(str, Enum):
    """Status of a single source item."""

    MATCHED = "matched"
    SKIPPED = "skipped"


SKIP_REASON_MESSAGES: Dict[SkipReason, str] = {
    SkipReason.EMPTY_TRACK_NAME: "Could not extract track name",
    SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD: "No match found on Spotify",
}


def describe_skip_reason(reason: SkipReason) -> str:
    return SKIP_REASON_MESSAGES.get(reason, reason.value)


@dataclass(frozen=True)
class StartEvent:
    total: int
    playlist_name: str = ""

    type = EventType.START

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "playlistName": self.playlist_name,
            "total": self.total,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """One per source item, in source order. index is 1-based."""

    index: int
    total: int
    title: str
    status: TrackStatus
    matched_name: Optional[str] = None
    matched_artist: Optional[str] = None
    skip_reason: Optional[SkipReason] = None

    type = EventType.PROGRESS

    def to_json(self) -> Dict[str, Any]:
        data = {
            "type": self.type.value,
            "current": self.index,
            "total": self.total,
            "title": self.title,
            "status": self.status.value,
        }
        if self.status is TrackStatus.MATCHED:
            data["spotifyTrack"] = self.matched_name
            data["spotifyArtist"] = self.matched_artist
        elif self.skip_reason is not None:
            data["skipReason"] = describe_skip_reason(self.skip_reason)
        return data


@dataclass(frozen=True)
class CompleteEvent:
    playlist_url: Optional[str]
    added_count: int
    skipped_count: int

    type = EventType.COMPLETE

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "playlistUrl": self.playlist_url,
            "added": self.added_count,
            "skipped": self.skipped_count,
        }


@dataclass(frozen=True)
class ErrorEvent:
    message: str

    type = EventType.ERROR

    def to_json(self) -> Dict[str, Any]:
        return {"type": self.type.value, "message": self.message}


TransferEvent = Union[StartEvent, ProgressEvent, CompleteEvent, ErrorEvent]


def to_sse(event: TransferEvent) -> str:
    """Frame an event as a server-sent-events message."""
    return f"data: {json.dumps(event.to_json(), ensure_ascii=False)}\n\n"


def format_event(event: TransferEvent) -> str:
    """Single human-readable line for console output."""
    if isinstance(event, StartEvent):
        return f"Transferring {event.total} tracks to '{event.playlist_name}'"
    if isinstance(event, ProgressEvent):
        prefix = f"[{event.index}/{event.total}]"
        if event.status is TrackStatus.MATCHED:
            return f"{prefix} MATCHED  {event.title} -> {event.matched_name} ({event.matched_artist})"
        return f"{prefix} SKIPPED  {event.title} ({describe_skip_reason(event.skip_reason)})"
    if isinstance(event, CompleteEvent):
        return (f"Done: {event.added_count} added, {event.skipped_count} skipped"
                + (f" - {event.playlist_url}" if event.playlist_url else ""))
    return f"Transfer failed: {event.message}"


def outcome_to_json(outcome: TransferOutcome) -> Dict[str, Any]:
    """Serialize a transfer outcome to JSON."""
    return {
        "playlistId": outcome.playlist_id,
        "playlistUrl": outcome.playlist_url,
        "added": outcome.added_count,
        "addedUris": list(outcome.added_uris),
        "skipped": [
            {
                "title": s.title,
                "reason": s.reason.value,
                "message": describe_skip_reason(s.reason),
            }
            for s in outcome.skipped
        ],
    }


def write_report(outcome: TransferOutcome, report_dir: str, job_id: str,
                 dry_run: bool = False) -> str:
    """Write a JSON transfer report and return its path."""
    os.makedirs(report_dir, exist_ok=True)

    report = {
        "jobId": job_id,
        "dryRun": dry_run,
        "timestamp": datetime.now().isoformat(),
        **outcome_to_json(outcome),
    }

    report_file = os.path.join(report_dir, f"transfer_report_{job_id}.json")
    with open(report_file, "w") as f:
        json.dump(report, f, indent=2, ensure_ascii=False)
    return report_file
