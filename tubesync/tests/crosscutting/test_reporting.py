import json
import os
import shutil
import tempfile

from tubesync.crosscutting.reporting import (
    CompleteEvent, ErrorEvent, ProgressEvent, StartEvent, TrackStatus, describe_skip_reason,
    format_event, outcome_to_json, to_sse, write_report,
)
from tubesync.domain.entities import SkipReason, SkippedItem, TransferOutcome


class TestEvents:
    """Tests for progress event payloads."""

    def test_start_event(self):
        assert StartEvent(total=3, playlist_name="Mix").to_json() == {
            "type": "start",
            "playlistName": "Mix",
            "total": 3,
        }

    def test_matched_progress_event(self):
        event = ProgressEvent(index=1, total=3, title="Queen - Bohemian Rhapsody",
                              status=TrackStatus.MATCHED, matched_name="Bohemian Rhapsody",
                              matched_artist="Queen")

        assert event.to_json() == {
            "type": "progress",
            "current": 1,
            "total": 3,
            "title": "Queen - Bohemian Rhapsody",
            "status": "matched",
            "spotifyTrack": "Bohemian Rhapsody",
            "spotifyArtist": "Queen",
        }

    def test_skipped_progress_event(self):
        event = ProgressEvent(index=2, total=3, title="???", status=TrackStatus.SKIPPED,
                              skip_reason=SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD)

        data = event.to_json()

        assert data["status"] == "skipped"
        assert data["skipReason"] == "No match found on Spotify"
        assert "spotifyTrack" not in data

    def test_complete_event(self):
        event = CompleteEvent(playlist_url="https://open.spotify.com/playlist/pl1",
                              added_count=2, skipped_count=1)

        assert event.to_json() == {
            "type": "complete",
            "playlistUrl": "https://open.spotify.com/playlist/pl1",
            "added": 2,
            "skipped": 1,
        }

    def test_error_event(self):
        assert ErrorEvent(message="Rate limited").to_json() == {"type": "error", "message": "Rate limited"}

    def test_skip_reason_messages(self):
        assert describe_skip_reason(SkipReason.EMPTY_TRACK_NAME) == "Could not extract track name"
        assert describe_skip_reason(SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD) == "No match found on Spotify"

    def test_sse_framing(self):
        frame = to_sse(ProgressEvent(index=1, total=1, title="Мумий Тролль - Утекай",
                                     status=TrackStatus.SKIPPED,
                                     skip_reason=SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD))

        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        payload = json.loads(frame[len("data: "):])
        assert payload["title"] == "Мумий Тролль - Утекай"
        assert "Мумий" in frame


class TestFormatEvent:
    """Tests for console lines."""

    def test_lines(self):
        assert format_event(StartEvent(total=2, playlist_name="Mix")) == "Transferring 2 tracks to 'Mix'"
        assert format_event(ProgressEvent(
            index=1, total=2, title="A - B", status=TrackStatus.MATCHED,
            matched_name="B", matched_artist="A",
        )) == "[1/2] MATCHED  A - B -> B (A)"
        assert format_event(ProgressEvent(
            index=2, total=2, title="", status=TrackStatus.SKIPPED,
            skip_reason=SkipReason.EMPTY_TRACK_NAME,
        )) == "[2/2] SKIPPED   (Could not extract track name)"
        assert format_event(ErrorEvent(message="boom")) == "Transfer failed: boom"

    def test_complete_with_and_without_url(self):
        assert format_event(CompleteEvent(playlist_url=None, added_count=1, skipped_count=0)) == \
            "Done: 1 added, 0 skipped"
        assert format_event(CompleteEvent(playlist_url="https://x", added_count=1, skipped_count=0)) == \
            "Done: 1 added, 0 skipped - https://x"


class TestReportWriting:
    """Tests for transfer reports."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.outcome = TransferOutcome(
            playlist_id="pl1",
            playlist_url="https://open.spotify.com/playlist/pl1",
            added_uris=["spotify:track:1", "spotify:track:1"],
            skipped=[SkippedItem(title="(Official Video)", reason=SkipReason.EMPTY_TRACK_NAME)],
        )

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_outcome_to_json(self):
        data = outcome_to_json(self.outcome)

        assert data["added"] == 2
        assert data["addedUris"] == ["spotify:track:1", "spotify:track:1"]
        assert data["skipped"] == [{
            "title": "(Official Video)",
            "reason": "EMPTY_TRACK_NAME",
            "message": "Could not extract track name",
        }]

    def test_write_report(self):
        report_dir = os.path.join(self.temp_dir, "reports")

        path = write_report(self.outcome, report_dir, "job-1", dry_run=True)

        assert path == os.path.join(report_dir, "transfer_report_job-1.json")
        with open(path) as f:
            report = json.load(f)
        assert report["jobId"] == "job-1"
        assert report["dryRun"] is True
        assert report["playlistId"] == "pl1"
        assert "timestamp" in report
