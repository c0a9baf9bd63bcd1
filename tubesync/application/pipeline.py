import time
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional
import logging

from tubesync.application.matching import TrackMatcher
from tubesync.crosscutting.reporting import (
    CompleteEvent, ErrorEvent, ProgressEvent, StartEvent, TrackStatus, TransferEvent,
)
from tubesync.domain.entities import (
    AddResult, Matched, MatchResult, Playlist, SkippedItem, SourceItem, TransferOutcome,
)
from tubesync.domain.errors import TemporaryFailure
from tubesync.domain.ports import DestinationCatalog


logger = logging.getLogger(__name__)

DEFAULT_PLAYLIST_NAME = "YouTube Playlist"
MAX_BATCH_SIZE = 100


class ProgressTracker:
    """Tracks progress and provides periodic updates."""

    def __init__(self, total_items: int, progress_interval_sec: int = 60):
        """Initialize progress tracker.

        Args:
            total_items: Total number of source items to process
            progress_interval_sec: Interval for progress updates in seconds
        """
        self.total_items = total_items
        self.processed_items = 0
        self.matched_items = 0
        self.skipped_items = 0
        self.last_progress_time = time.time()
        self.progress_interval_sec = progress_interval_sec
        self.start_time = time.time()

    def update(self, item_index: int, match_result: MatchResult) -> None:
        """Update progress with a new match result.

        Args:
            item_index: Current item index (0-based)
            match_result: Result of matching the item
        """
        self.processed_items = item_index + 1

        if isinstance(match_result, Matched):
            self.matched_items += 1
        else:
            self.skipped_items += 1

        current_time = time.time()

        # Log progress every 10 items or every progress_interval_sec
        if (self.processed_items % 10 == 0 or
                current_time - self.last_progress_time >= self.progress_interval_sec):

            elapsed_sec = current_time - self.start_time
            progress_pct = (self.processed_items / self.total_items) * 100

            logger.info(f"Progress: {self.processed_items}/{self.total_items} items ({progress_pct:.1f}%) "
                        f"processed in {elapsed_sec:.1f}s. "
                        f"Matched: {self.matched_items}, Skipped: {self.skipped_items}")

            self.last_progress_time = current_time

    def get_final_summary(self) -> Dict[str, Any]:
        """Get final progress summary."""
        total_time = time.time() - self.start_time
        match_rate = (self.matched_items / self.total_items) * 100 if self.total_items > 0 else 0

        return {
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "matched_items": self.matched_items,
            "skipped_items": self.skipped_items,
            "match_rate_percent": match_rate,
            "total_time_seconds": total_time,
        }


class BatchProcessor:
    """Appends matched track uris to the destination playlist in fixed-size batches."""

    def __init__(self, destination: DestinationCatalog, batch_size: int = MAX_BATCH_SIZE):
        """Initialize batch processor.

        Args:
            destination: Destination catalog (e.g., Spotify)
            batch_size: Maximum number of uris per request
        """
        if not 0 < batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        self.destination = destination
        self.batch_size = batch_size

    def split_into_batches(self, track_uris: List[str]) -> List[List[str]]:
        """Split track URIs into batches of at most batch_size, preserving order."""
        batches = []
        for i in range(0, len(track_uris), self.batch_size):
            batches.append(track_uris[i:i + self.batch_size])
        return batches

    def process_batch(self,
                      playlist_id: Optional[str],
                      track_uris: List[str],
                      batch_index: int,
                      dry_run: bool = False) -> AddResult:
        """Submit a single batch. Errors from the destination propagate.

        Raises:
            TemporaryFailure: If the destination reports uris it did not add
        """
        if dry_run:
            logger.info(f"DRY-RUN: Would add batch {batch_index} with {len(track_uris)} tracks")
            return AddResult(added=len(track_uris))

        logger.info(f"Adding batch {batch_index} ({len(track_uris)} tracks)")
        result = self.destination.add_tracks_batch(playlist_id, track_uris)
        logger.info(f"Batch {batch_index} completed: added={result.added}, errors={result.errors}")
        if result.errors:
            raise TemporaryFailure(f"Batch {batch_index}: {result.errors} of {len(track_uris)} tracks were not added")
        return result

    def submit_all(self, playlist_id: Optional[str], track_uris: List[str], dry_run: bool = False) -> int:
        """Submit every batch sequentially, each awaited before the next. Returns the added count."""
        total_added = 0
        for batch_index, batch in enumerate(self.split_into_batches(track_uris)):
            total_added += self.process_batch(playlist_id, batch, batch_index, dry_run).added
        return total_added


class TransferPipeline:
    """Moves a list of source items into a newly created destination playlist.

    Items are matched strictly one after another; no batch is appended before every item
    has been matched or skipped. Progress is delivered as a stream of events terminated by
    exactly one CompleteEvent or ErrorEvent.
    """

    def __init__(self,
                 destination: DestinationCatalog,
                 matcher: Optional[TrackMatcher] = None,
                 batch_size: int = MAX_BATCH_SIZE):
        """Initialize transfer pipeline.

        Args:
            destination: Destination catalog used for search, playlist creation and append
            matcher: Track matcher; a default one is created when omitted
            batch_size: Maximum number of uris per append request
        """
        self.destination = destination
        self.matcher = matcher or TrackMatcher()
        self.batch_processor = BatchProcessor(destination, batch_size=batch_size)
        self.outcome: Optional[TransferOutcome] = None
        self.error: Optional[Exception] = None

    def iter_transfer(self,
                      items: Iterable[SourceItem],
                      playlist_name: Optional[str] = None,
                      is_public: bool = False,
                      dry_run: bool = False) -> Iterator[TransferEvent]:
        """Run a transfer lazily, yielding progress events as they happen.

        When the stream ends, `outcome` holds the TransferOutcome, or `error` the
        exception that stopped the run. Abandoning the generator stops further searches.
        """
        self.outcome = None
        self.error = None

        items = list(items)
        total = len(items)
        name = playlist_name or DEFAULT_PLAYLIST_NAME

        yield StartEvent(total=total, playlist_name=name)

        try:
            playlist: Optional[Playlist] = None
            if dry_run:
                logger.info(f"DRY-RUN: Would create playlist '{name}'")
            else:
                owner_id = self.destination.current_user_id()
                playlist = self.destination.create_playlist(owner_id, name, is_public)
                logger.info(f"Created playlist '{name}' ({playlist.id})")

            tracker = ProgressTracker(total)
            results: List[MatchResult] = []
            matched_uris: List[str] = []
            skipped: List[SkippedItem] = []

            for index, item in enumerate(items):
                result = self.matcher.match(item, self.destination.search)
                results.append(result)
                tracker.update(index, result)

                if isinstance(result, Matched):
                    matched_uris.append(result.candidate.uri)
                    yield ProgressEvent(
                        index=index + 1,
                        total=total,
                        title=item.title,
                        status=TrackStatus.MATCHED,
                        matched_name=result.candidate.name,
                        matched_artist=result.candidate.primary_artist,
                    )
                else:
                    skipped.append(SkippedItem(title=item.title, reason=result.reason))
                    yield ProgressEvent(
                        index=index + 1,
                        total=total,
                        title=item.title,
                        status=TrackStatus.SKIPPED,
                        skip_reason=result.reason,
                    )

            logger.info(f"Final matching summary: {tracker.get_final_summary()}")
            logger.debug(f"Match statistics: {self.matcher.get_match_statistics(results)}")

            self.batch_processor.submit_all(playlist.id if playlist else None, matched_uris, dry_run)

        except Exception as e:
            logger.error(f"Transfer failed: {e}")
            self.error = e
            yield ErrorEvent(message=str(e) or type(e).__name__)
            return

        self.outcome = TransferOutcome(
            playlist_id=playlist.id if playlist else None,
            playlist_url=playlist.external_url if playlist else None,
            added_uris=matched_uris,
            skipped=skipped,
        )
        logger.info(f"Transfer completed: {self.outcome.added_count}/{total} tracks added, "
                    f"{self.outcome.skipped_count} skipped")

        yield CompleteEvent(
            playlist_url=self.outcome.playlist_url,
            added_count=self.outcome.added_count,
            skipped_count=self.outcome.skipped_count,
        )

    def transfer(self,
                 items: Iterable[SourceItem],
                 playlist_name: Optional[str] = None,
                 is_public: bool = False,
                 on_event: Optional[Callable[[TransferEvent], None]] = None,
                 dry_run: bool = False) -> TransferOutcome:
        """Run a transfer to completion, forwarding every event to on_event.

        Raises:
            The error that stopped the run, after the ErrorEvent has been delivered.
        """
        for event in self.iter_transfer(items, playlist_name, is_public, dry_run):
            if on_event is not None:
                on_event(event)

        if self.error is not None:
            raise self.error
        return self.outcome
