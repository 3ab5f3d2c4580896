"""Tests for candidate scoring and the match decision."""

import pytest

from game_library.catalog.models import CatalogEntry
from game_library.config import MatchingConfig
from game_library.library.models import ResolutionStatus
from game_library.matching.matcher import (
    MatchCandidate,
    Matcher,
    MatchQuery,
    MatchSignals,
    title_similarity,
)

# Catalog ids of the shared catalog_entries fixture
HALF_LIFE, HALF_LIFE_2 = 1, 2
DOOM_1993, DOOM_2016 = 6, 7
VALVE = 10


def _candidate(catalog_id: int, score: float) -> MatchCandidate:
    return MatchCandidate(catalog_id=catalog_id, score=score, signals=MatchSignals(title_similarity=score))


class TestTitleSimilarity:
    """Tests for title_similarity."""

    def test_exact_after_normalization(self) -> None:
        assert title_similarity("half life 2", ["Half-Life 2"]) == 1.0

    def test_best_alias_wins(self) -> None:
        assert title_similarity("hl2", ["Half-Life 2", "HL2"]) == 1.0

    def test_no_names(self) -> None:
        assert title_similarity("portal", []) == 0.0


class TestScoring:
    """Tests for Matcher.score."""

    def test_half_life_2_scenario(self, matcher: Matcher, catalog_entries: list[CatalogEntry]) -> None:
        """The exact title outranks its prequel sharing most of the name."""
        query = MatchQuery.from_title("Half Life 2")
        by_id = {entry.catalog_id: entry for entry in catalog_entries}

        sequel = matcher.score(query, by_id[HALF_LIFE_2])
        prequel = matcher.score(query, by_id[HALF_LIFE])

        assert sequel.score == pytest.approx(0.85)
        assert prequel.score == pytest.approx(0.85 * (1 - 2 / 11))
        assert sequel.score > prequel.score

    def test_score_monotonic_in_title_similarity(self, matcher: Matcher) -> None:
        """With other signals fixed, a closer title never scores lower."""
        candidate = CatalogEntry(1, "The Elder Scrolls V: Skyrim", release_year=2011)
        queries = [
            "Skyrim",
            "Elder Scrolls Skyrim",
            "The Elder Scrolls Skyrim",
            "The Elder Scrolls V Skyrim",
            "The Elder Scrolls V: Skyrim",
        ]

        scored = [matcher.score(MatchQuery.from_title(q, release_year=2011), candidate) for q in queries]
        by_similarity = sorted(scored, key=lambda c: c.signals.title_similarity)

        assert [c.score for c in by_similarity] == sorted(c.score for c in scored)

    def test_all_signals(self, matcher: Matcher) -> None:
        query = MatchQuery.from_title(
            "Half-Life 2",
            release_year=2004,
            company_ids=frozenset({VALVE}),
            collection_ids=frozenset({1}),
        )
        candidate = CatalogEntry(
            HALF_LIFE_2, "Half-Life 2", release_year=2004, collection_id=1, company_ids=frozenset({VALVE})
        )

        scored = matcher.score(query, candidate)

        assert scored.score == pytest.approx(1.0)
        assert scored.signals.company_overlap == 1.0
        assert scored.signals.collection_bonus == 1.0

    def test_company_overlap_is_jaccard(self, matcher: Matcher) -> None:
        query = MatchQuery.from_title("X", company_ids=frozenset({1, 2}))
        candidate = CatalogEntry(9, "X", company_ids=frozenset({2, 3}))

        assert matcher.score(query, candidate).signals.company_overlap == pytest.approx(1 / 3)

    @pytest.mark.parametrize(
        ("query_year", "candidate_year", "expected"),
        [
            (2004, 2004, 1.0),
            (2004, 2005, 1.0),
            (2004, 2006, 2 / 3),
            (2004, 2007, 1 / 3),
            (2004, 2008, 0.0),
            (None, 2004, 0.0),
            (2004, None, 0.0),
        ],
    )
    def test_year_proximity(
        self, matcher: Matcher, query_year: int | None, candidate_year: int | None, expected: float
    ) -> None:
        assert matcher.year_proximity(query_year, candidate_year) == pytest.approx(expected)


class TestRanking:
    """Tests for Matcher.rank."""

    def test_equal_scores_order_by_catalog_id(self, matcher: Matcher) -> None:
        candidates = [CatalogEntry(DOOM_2016, "DOOM"), CatalogEntry(DOOM_1993, "DOOM")]

        ranked = matcher.rank(MatchQuery.from_title("Doom"), candidates)

        assert [c.catalog_id for c in ranked] == [DOOM_1993, DOOM_2016]

    def test_rank_is_deterministic(self, matcher: Matcher, catalog_entries: list[CatalogEntry]) -> None:
        query = MatchQuery.from_title("Portal 2")

        first = matcher.rank(query, catalog_entries)
        second = matcher.rank(query, list(reversed(catalog_entries)))

        assert first == second


class TestDecision:
    """Tests for Matcher.decide."""

    def test_no_candidates_fails(self, matcher: Matcher) -> None:
        decision = matcher.decide([])

        assert decision.status == ResolutionStatus.FAILED
        assert decision.catalog_id is None

    def test_clear_winner_resolves(self, matcher: Matcher) -> None:
        decision = matcher.decide([_candidate(2, 0.87), _candidate(1, 0.71)])

        assert decision.status == ResolutionStatus.RESOLVED
        assert decision.catalog_id == 2
        assert decision.confidence == 0.87

    def test_single_candidate_above_threshold_resolves(self, matcher: Matcher) -> None:
        assert matcher.decide([_candidate(3, 0.8)]).status == ResolutionStatus.RESOLVED

    def test_equal_candidates_ambiguous(self, matcher: Matcher) -> None:
        """Two equally good candidates are never auto-resolved."""
        decision = matcher.decide([_candidate(DOOM_1993, 0.85), _candidate(DOOM_2016, 0.85)])

        assert decision.status == ResolutionStatus.AMBIGUOUS
        assert decision.catalog_id is None
        assert decision.candidate_ids == (DOOM_1993, DOOM_2016)

    def test_below_accept_threshold_ambiguous(self, matcher: Matcher) -> None:
        decision = matcher.decide([_candidate(1, 0.6), _candidate(2, 0.3)])

        assert decision.status == ResolutionStatus.AMBIGUOUS
        assert decision.candidate_ids == (1,)

    def test_below_floor_fails(self, matcher: Matcher) -> None:
        decision = matcher.decide([_candidate(1, 0.39)])

        assert decision.status == ResolutionStatus.FAILED
        assert "below floor" in decision.reason

    def test_shortlist_capped(self) -> None:
        matcher = Matcher(MatchingConfig(max_ambiguous_candidates=2))

        decision = matcher.decide([_candidate(i, 0.8) for i in range(1, 6)])

        assert decision.status == ResolutionStatus.AMBIGUOUS
        assert decision.candidate_ids == (1, 2)

    def test_ambiguous_scenario_end_to_end(self, matcher: Matcher, catalog_entries: list[CatalogEntry]) -> None:
        doom = [entry for entry in catalog_entries if entry.title == "DOOM"]

        decision = matcher.decide(matcher.rank(MatchQuery.from_title("Doom"), doom))

        assert decision.status == ResolutionStatus.AMBIGUOUS
        assert set(decision.candidate_ids) == {DOOM_1993, DOOM_2016}
