from unittest.mock import Mock

import pytest

from tubesync.application.matching import MatchConfig, QuerySearch, SearchState, TrackMatcher
from tubesync.domain.entities import (
    CandidateArtist, CandidateTrack, Matched, SkipReason, Skipped, SourceItem,
)
from tubesync.domain.errors import TemporaryFailure


def make_candidate(name, *artists, track_id=None):
    track_id = track_id or name.lower().replace(" ", "_")
    return CandidateTrack(
        id=track_id,
        name=name,
        uri=f"spotify:track:{track_id}",
        artists=[CandidateArtist(name=a) for a in artists],
    )


class TestScoring:
    """Tests for candidate scoring."""

    def setup_method(self):
        self.matcher = TrackMatcher()

    def test_exact_title_and_artist_stack_all_bonuses(self):
        candidate = make_candidate("Xyz", "Abc")

        score = self.matcher.score_candidate("Xyz", "Abc", candidate)

        # 0.6 + 0.4 + 0.3 + 0.15 + 0.15
        assert score >= 1.5
        assert score == pytest.approx(1.6)

    def test_artist_similarity_uses_best_listed_artist(self):
        candidate = make_candidate("Xyz", "Someone Else", "Abc")

        assert self.matcher.score_candidate("Xyz", "Abc", candidate) == pytest.approx(1.6)

    def test_without_artist_title_similarity_alone(self):
        candidate = make_candidate("Hello", "Whoever")

        # 1.0 similarity + exact bonus + containment bonus
        assert self.matcher.score_candidate("Hello", None, candidate) == pytest.approx(1.45)

    def test_containment_bonus_without_exact_match(self):
        candidate = make_candidate("Hello Remastered")

        score = self.matcher.score_candidate("Hello", None, candidate)

        assert score == pytest.approx(8 / 18 + 0.15)

    def test_bonuses_compare_without_spaces(self):
        candidate = make_candidate("Somebody")

        score = self.matcher.score_candidate("Some Body", None, candidate)

        # similarity keeps the space (0.8) while the bonuses see identical strings
        assert score == pytest.approx(0.8 + 0.3 + 0.15)

    def test_unrelated_candidate_scores_zero(self):
        candidate = make_candidate("Zzzz", "Qqqq")

        assert self.matcher.score_candidate("Song", "Artist", candidate) == 0.0

    def test_candidate_without_artists(self):
        candidate = make_candidate("Xyz")

        # title part only, artist similarity 0 and no artist bonus
        assert self.matcher.score_candidate("Xyz", "Abc", candidate) == pytest.approx(0.6 + 0.3 + 0.15)

    def test_weights_come_from_config(self):
        matcher = TrackMatcher(MatchConfig(title_weight=1.0, artist_weight=0.0,
                                           exact_title_bonus=0.0, title_contains_bonus=0.0,
                                           artist_contains_bonus=0.0))
        candidate = make_candidate("Xyz", "Qqqq")

        assert matcher.score_candidate("Xyz", "Abc", candidate) == pytest.approx(1.0)

    def test_best_candidate_prefers_earliest_on_tie(self):
        first = make_candidate("Xyz", "Abc", track_id="first")
        second = make_candidate("Xyz", "Abc", track_id="second")

        best, score = self.matcher.best_candidate("Xyz", "Abc", [first, second])

        assert best is first
        assert score == pytest.approx(1.6)


class TestQueryBuilding:
    """Tests for the search query escalation list."""

    def setup_method(self):
        self.matcher = TrackMatcher()

    def test_queries_with_artist(self):
        item = SourceItem(id="v1", title="Artist - Song (Official Video)")

        queries = self.matcher.build_queries(item, "Song", "Artist")

        assert queries == [
            "track:Song artist:Artist",
            "Song Artist",
            "Song",
            "Artist - Song (Official Video)",
        ]

    def test_queries_without_artist(self):
        item = SourceItem(id="v1", title="Song | Lyrics")

        assert self.matcher.build_queries(item, "Song", None) == ["Song", "Song | Lyrics"]

    def test_identical_queries_are_deduplicated(self):
        item = SourceItem(id="v1", title="Song")

        assert self.matcher.build_queries(item, "Song", None) == ["Song"]

    def test_effective_artist_falls_back_to_channel(self):
        item = SourceItem(id="v1", title="Song", channel_title="Queen - Topic")
        parsed = self.matcher.parser.parse(item.title)

        assert self.matcher.effective_artist(parsed, item) == "Queen"

    def test_effective_artist_prefers_title(self):
        item = SourceItem(id="v1", title="Artist - Song", channel_title="Some Channel")
        parsed = self.matcher.parser.parse(item.title)

        assert self.matcher.effective_artist(parsed, item) == "Artist"

    def test_effective_artist_none_without_channel(self):
        item = SourceItem(id="v1", title="Song", channel_title="")
        parsed = self.matcher.parser.parse(item.title)

        assert self.matcher.effective_artist(parsed, item) is None


class TestQuerySearch:
    """Tests for the query escalation state machine."""

    def test_initial_state(self):
        search = QuerySearch(["a", "b"], threshold=0.5)

        assert search.state is SearchState.NOT_STARTED
        assert search.current_query is None
        assert not search.done

    def test_accepts_and_stops(self):
        candidate = make_candidate("Xyz")
        search = QuerySearch(["a", "b", "c"], threshold=0.5)

        assert search.next_query() == "a"
        assert search.record(None, 0.0) is SearchState.SEARCHING
        assert search.next_query() == "b"
        assert search.record(candidate, 0.7) is SearchState.ACCEPTED

        assert search.done
        assert search.accepted == (candidate, 0.7)
        assert search.current_query == "b"
        assert search.next_query() is None

    def test_score_equal_to_threshold_is_accepted(self):
        search = QuerySearch(["a"], threshold=0.5)
        search.next_query()

        assert search.record(make_candidate("Xyz"), 0.5) is SearchState.ACCEPTED

    def test_exhausted_after_last_query(self):
        search = QuerySearch(["a"], threshold=0.5)

        assert search.next_query() == "a"
        search.record(make_candidate("Xyz"), 0.49)
        assert search.next_query() is None
        assert search.state is SearchState.EXHAUSTED
        assert search.accepted is None

    def test_record_outside_searching_raises(self):
        search = QuerySearch(["a"], threshold=0.5)

        with pytest.raises(RuntimeError):
            search.record(None, 0.0)


class TestTrackMatcher:
    """Tests for matching a source item end to end against a search function."""

    def setup_method(self):
        self.matcher = TrackMatcher()
        self.good = make_candidate("Song", "Artist")
        self.bad = make_candidate("Zzzz", "Qqqq")

    def test_empty_track_skips_without_searching(self):
        search_fn = Mock(return_value=[self.good])

        result = self.matcher.match(SourceItem(id="v1", title=""), search_fn)

        assert result == Skipped(SkipReason.EMPTY_TRACK_NAME)
        search_fn.assert_not_called()

    def test_match_on_first_query(self):
        search_fn = Mock(return_value=[self.bad, self.good])

        result = self.matcher.match(SourceItem(id="v1", title="Artist - Song"), search_fn)

        assert isinstance(result, Matched)
        assert result.candidate is self.good
        assert result.score == pytest.approx(1.6)
        assert result.query == "track:Song artist:Artist"
        assert search_fn.call_count == 1

    def test_stops_at_second_query_when_it_is_first_acceptable(self):
        def search(query):
            if query == "Song Artist":
                return [self.good]
            return [self.bad]

        search_fn = Mock(side_effect=search)

        result = self.matcher.match(SourceItem(id="v1", title="Artist - Song"), search_fn)

        assert isinstance(result, Matched)
        assert result.candidate is self.good
        assert search_fn.call_count == 2
        assert [c.args[0] for c in search_fn.call_args_list] == [
            "track:Song artist:Artist",
            "Song Artist",
        ]

    def test_first_acceptable_query_wins_over_better_later_result(self):
        weaker = make_candidate("Song Live", "Artist")
        search_fn = Mock(side_effect=[[weaker], [self.good]])

        result = self.matcher.match(SourceItem(id="v1", title="Artist - Song"), search_fn)

        assert result.candidate is weaker
        assert search_fn.call_count == 1

    def test_exhausts_all_queries(self):
        search_fn = Mock(return_value=[])

        result = self.matcher.match(SourceItem(id="v1", title="Artist - Song"), search_fn)

        assert result == Skipped(SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD)
        assert search_fn.call_count == 4

    def test_low_scores_are_not_accepted(self):
        search_fn = Mock(return_value=[self.bad])

        result = self.matcher.match(SourceItem(id="v1", title="Artist - Song"), search_fn)

        assert result == Skipped(SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD)
        assert search_fn.call_count == 4

    def test_channel_name_used_as_artist(self):
        search_fn = Mock(return_value=[self.good])

        self.matcher.match(SourceItem(id="v1", title="Song", channel_title="Artist - Topic"), search_fn)

        search_fn.assert_called_once_with("track:Song artist:Artist")

    def test_search_errors_propagate(self):
        search_fn = Mock(side_effect=TemporaryFailure("network down"))

        with pytest.raises(TemporaryFailure):
            self.matcher.match(SourceItem(id="v1", title="Artist - Song"), search_fn)

    def test_threshold_from_config(self):
        matcher = TrackMatcher(MatchConfig(acceptance_threshold=2.0))
        search_fn = Mock(return_value=[self.good])

        result = matcher.match(SourceItem(id="v1", title="Artist - Song"), search_fn)

        assert result == Skipped(SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD)

    def test_noise_phrases_from_config(self):
        matcher = TrackMatcher(MatchConfig(noise_phrases=("remix",)))
        search_fn = Mock(return_value=[self.good])

        matcher.match(SourceItem(id="v1", title="Artist - Song Remix"), search_fn)

        search_fn.assert_called_once_with("track:Song artist:Artist")


class TestMatchStatistics:
    """Tests for run summaries."""

    def setup_method(self):
        self.matcher = TrackMatcher()

    def test_match_rate(self):
        results = [
            Matched(candidate=make_candidate("A"), score=1.0),
            Skipped(SkipReason.EMPTY_TRACK_NAME),
            Skipped(SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD),
            Matched(candidate=make_candidate("B"), score=0.9),
        ]

        assert self.matcher.calculate_match_rate(results) == 0.5
        assert self.matcher.calculate_match_rate([]) == 0.0

    def test_statistics_by_reason(self):
        results = [
            Matched(candidate=make_candidate("A"), score=1.0),
            Skipped(SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD),
            Skipped(SkipReason.NO_CANDIDATE_ABOVE_THRESHOLD),
        ]

        stats = self.matcher.get_match_statistics(results)

        assert stats["total"] == 3
        assert stats["matched"] == 1
        assert stats["skipped"] == 2
        assert stats["by_reason"] == {"NO_CANDIDATE_ABOVE_THRESHOLD": 2}
