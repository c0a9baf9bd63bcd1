import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from tubesync.domain.entities import (
    CandidateTrack, Matched, MatchResult, ParsedTitle, SkipReason, Skipped, SourceItem,
)
from tubesync.domain.normalization import normalize_strip_spaces, similarity
from tubesync.domain.title_parser import DEFAULT_NOISE_PHRASES, TitleParser, clean_channel_title


logger = logging.getLogger(__name__)

SearchFn = Callable[[str], Sequence[CandidateTrack]]


@dataclass(frozen=True)
class MatchConfig:
    """Tunable constants of the title parser and the scoring function."""

    noise_phrases: Tuple[str, ...] = DEFAULT_NOISE_PHRASES
    acceptance_threshold: float = 0.5
    title_weight: float = 0.6
    artist_weight: float = 0.4
    exact_title_bonus: float = 0.3
    title_contains_bonus: float = 0.15
    artist_contains_bonus: float = 0.15


class SearchState(str, Enum):
    NOT_STARTED = "not_started"
    SEARCHING = "searching"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


class QuerySearch:
    """Walks an ordered list of queries until one yields an acceptable candidate.

    NOT_STARTED -> SEARCHING(i) -> ... -> ACCEPTED | EXHAUSTED. The first query whose
    best candidate reaches the threshold wins; later queries are never issued.
    """

    def __init__(self, queries: Iterable[str], threshold: float):
        self.queries = list(queries)
        self.threshold = threshold
        self.state = SearchState.NOT_STARTED
        self.query_index = -1
        self.accepted: Optional[Tuple[CandidateTrack, float]] = None

    @property
    def done(self) -> bool:
        return self.state in (SearchState.ACCEPTED, SearchState.EXHAUSTED)

    @property
    def current_query(self) -> Optional[str]:
        if self.state is SearchState.NOT_STARTED or self.query_index < 0:
            return None
        return self.queries[self.query_index]

    def next_query(self) -> Optional[str]:
        """Advance to the next query, or return None once accepted or out of queries."""
        if self.done:
            return None
        if self.query_index + 1 >= len(self.queries):
            self.state = SearchState.EXHAUSTED
            return None
        self.query_index += 1
        self.state = SearchState.SEARCHING
        return self.queries[self.query_index]

    def record(self, candidate: Optional[CandidateTrack], score: float) -> SearchState:
        """Record the best candidate of the current query's result set."""
        if self.state is not SearchState.SEARCHING:
            raise RuntimeError(f"Cannot record a result in state {self.state.value}")
        if candidate is not None and score >= self.threshold:
            self.accepted = (candidate, score)
            self.state = SearchState.ACCEPTED
        return self.state


class TrackMatcher:
    """Matches a source video to a destination track.

    For every item the title is parsed, a list of search queries is built from the most
    specific (field-qualified track and artist) to the most generic (raw video title),
    and each query's results are scored with a weighted Dice similarity plus bonuses for
    exact and substring matches. The first query producing a candidate at or above the
    acceptance threshold wins.
    """

    def __init__(self, config: Optional[MatchConfig] = None, parser: Optional[TitleParser] = None):
        """Initialize the matcher.

        Args:
            config: Scoring constants; defaults to MatchConfig()
            parser: Title parser; defaults to one built from config.noise_phrases
        """
        self.config = config or MatchConfig()
        self.parser = parser or TitleParser(self.config.noise_phrases)

    def effective_artist(self, parsed: ParsedTitle, item: SourceItem) -> Optional[str]:
        """Artist parsed from the title, else the cleaned channel name, else None."""
        return parsed.artist or clean_channel_title(item.channel_title) or None

    def build_queries(self, item: SourceItem, track: str, artist: Optional[str]) -> List[str]:
        queries = []
        if artist:
            queries.append(f"track:{track} artist:{artist}")
            queries.append(f"{track} {artist}")
        queries.append(track)
        queries.append(item.title)

        unique: List[str] = []
        for q in queries:
            if q and q not in unique:
                unique.append(q)
        return unique

    def score_candidate(self, track: str, artist: Optional[str], candidate: CandidateTrack) -> float:
        """Score a candidate against the target track/artist. Not clamped to 1.0."""
        cfg = self.config
        artist_names = [a.name for a in candidate.artists]

        title_sim = similarity(track, candidate.name)
        if artist:
            artist_sim = max((similarity(artist, name) for name in artist_names), default=0.0)
            score = cfg.title_weight * title_sim + cfg.artist_weight * artist_sim
        else:
            score = title_sim

        target_track_n = normalize_strip_spaces(track)
        candidate_track_n = normalize_strip_spaces(candidate.name)
        if candidate_track_n == target_track_n:
            score += cfg.exact_title_bonus
        if candidate_track_n in target_track_n or target_track_n in candidate_track_n:
            score += cfg.title_contains_bonus

        if artist:
            target_artist_n = normalize_strip_spaces(artist)
            for name in artist_names:
                name_n = normalize_strip_spaces(name)
                if name_n in target_artist_n or target_artist_n in name_n:
                    score += cfg.artist_contains_bonus
                    break

        return score

    def best_candidate(self,
                       track: str,
                       artist: Optional[str],
                       candidates: Sequence[CandidateTrack]) -> Tuple[Optional[CandidateTrack], float]:
        """Highest scoring candidate of one result set; the earliest wins ties."""
        best: Optional[CandidateTrack] = None
        best_score = 0.0
        for candidate in candidates:
            score = self.score_candidate(track, artist, candidate)
            logger.debug(f"  '{candidate.name}' by {candidate.primary_artist}: score={score:.2f}")
            if best is None or score > best_score:
                best = candidate
                best_score = score
        return best, best_score

    def match(self, item: SourceItem, search_fn: SearchFn) -> MatchResult:
        """Find the destination track for a source item.

        Args:
            item: Source playlist item
            search_fn: Destination search; errors it raises are propagated

        Returns:
            Matched with the accepted candidate, or Skipped with the reason
        """
        parsed = self.parser.parse(item.title)
        logger.debug(f"Parsed '{item.title}': artist={parsed.artist!r}, track={parsed.track!r}")

        if not parsed.track:
            logger.info(f"Skipping '{item.title}': could not extract track name")
            return Skipped(SkipReason.EMPTY_TRACK_NAME)

        artist = self.effective_artist(parsed, item)
        search = QuerySearch(self.build_queries(item, parsed.track, artist),
                             self.config.acceptance_threshold)

        while True:
            query = search.next_query()
            if query is None:
                break
            logger.debug(f"Search: {query!r}")
            candidates = search_fn(query) or []
            if not candidates:
                search.record(None, 0.0)
                continue
            candidate, score = self.best_candidate(parsed.track, artist, candidates)
            search.record(candidate, score)

        if search.state is SearchState.ACCEPTED:
            candidate, score = search.accepted
            logger.info(f"Matched '{item.title}' -> '{candidate.name}' by {candidate.primary_artist} "
                        f"(score {score:.2f}, query {search.query_index + 1}/{len(search.queries)})")
            return Matched(candidate=candidate, score=score, query=search.current_query)

        logger.info(f"Skipping '{item.title}': no match after {len(search.queries)} searches")
        return Skipped(SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD)

    def calculate_match_rate(self, results: List[MatchResult]) -> float:
        """Calculate the overall match rate from results.

        Returns:
            Match rate as a fraction (0.0 to 1.0)
        """
        if not results:
            return 0.0
        return sum(1 for r in results if isinstance(r, Matched)) / len(results)

    def get_match_statistics(self, results: List[MatchResult]) -> dict:
        """Get counts of matched and skipped results, skips broken down by reason."""
        total = len(results)
        matched = sum(1 for r in results if isinstance(r, Matched))

        by_reason = {}
        for result in results:
            if isinstance(result, Skipped):
                by_reason[result.reason.value] = by_reason.get(result.reason.value, 0) + 1

        return {
            "total": total,
            "matched": matched,
            "skipped": total - matched,
            "match_rate": matched / total if total else 0.0,
            "by_reason": by_reason,
        }
