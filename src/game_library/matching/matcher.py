"""
Candidate scoring and the resolve/ambiguous/fail decision.

Score = weighted sum of title similarity (dominant), release year
proximity, company overlap and collection membership, clamped to
[0, 1]. The score is monotonic in title similarity: with every other
signal fixed, a closer title never scores lower.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from game_library.catalog.models import CatalogEntry
from game_library.catalog.normalize import normalize_title
from game_library.config import MatchingConfig
from game_library.library.models import ResolutionStatus


@dataclass(frozen=True)
class MatchQuery:
    """What is known about the storefront game being resolved."""

    title: str
    normalized_title: str
    release_year: int | None = None
    company_ids: frozenset[int] = frozenset()
    collection_ids: frozenset[int] = frozenset()

    @classmethod
    def from_title(cls, title: str, **kwargs: object) -> "MatchQuery":
        return cls(title=title, normalized_title=normalize_title(title), **kwargs)  # type: ignore[arg-type]


@dataclass(frozen=True)
class MatchSignals:
    title_similarity: float
    year_proximity: float = 0.0
    company_overlap: float = 0.0
    collection_bonus: float = 0.0


@dataclass(frozen=True)
class MatchCandidate:
    """A scored catalog entry."""

    catalog_id: int
    score: float
    signals: MatchSignals
    title: str = ""


@dataclass(frozen=True)
class MatchDecision:
    """Outcome of deciding over a ranked candidate list."""

    status: ResolutionStatus
    best: MatchCandidate | None = None
    shortlist: tuple[MatchCandidate, ...] = ()
    reason: str = ""

    @property
    def catalog_id(self) -> int | None:
        if self.status != ResolutionStatus.RESOLVED or self.best is None:
            return None
        return self.best.catalog_id

    @property
    def confidence(self) -> float | None:
        return self.best.score if self.best else None

    @property
    def candidate_ids(self) -> tuple[int, ...]:
        return tuple(c.catalog_id for c in self.shortlist)


def title_similarity(normalized_query: str, names: Iterable[str]) -> float:
    """Best normalized Levenshtein similarity between the query and any name."""
    best = 0.0
    for name in names:
        similarity = Levenshtein.normalized_similarity(normalized_query, normalize_title(name))
        if similarity > best:
            best = similarity
            if best == 1.0:
                break
    return best


class Matcher:
    """
    Scores catalog candidates against a query and decides the outcome.

    Example:
        >>> matcher = Matcher(MatchingConfig())
        >>> ranked = matcher.rank(MatchQuery.from_title("Half Life 2"), candidates)
        >>> decision = matcher.decide(ranked)
    """

    def __init__(self, config: MatchingConfig | None = None) -> None:
        self._config = config or MatchingConfig()

    @property
    def config(self) -> MatchingConfig:
        return self._config

    def year_proximity(self, query_year: int | None, candidate_year: int | None) -> float:
        if query_year is None or candidate_year is None:
            return 0.0

        diff = abs(query_year - candidate_year)
        full = self._config.year_full_window
        zero = self._config.year_zero_beyond
        if diff <= full:
            return 1.0
        if diff > zero:
            return 0.0
        return 1.0 - (diff - full) / (zero - full + 1)

    def score(self, query: MatchQuery, candidate: CatalogEntry) -> MatchCandidate:
        cfg = self._config

        signals = MatchSignals(
            title_similarity=title_similarity(query.normalized_title, candidate.names),
            year_proximity=self.year_proximity(query.release_year, candidate.release_year),
            company_overlap=_jaccard(query.company_ids, candidate.company_ids),
            collection_bonus=(
                1.0
                if candidate.collection_id is not None
                and candidate.collection_id in query.collection_ids
                else 0.0
            ),
        )

        raw = (
            cfg.title_weight * signals.title_similarity
            + cfg.year_weight * signals.year_proximity
            + cfg.company_weight * signals.company_overlap
            + cfg.collection_weight * signals.collection_bonus
        )
        return MatchCandidate(
            catalog_id=candidate.catalog_id,
            score=min(1.0, max(0.0, raw)),
            signals=signals,
            title=candidate.title,
        )

    def rank(self, query: MatchQuery, candidates: Iterable[CatalogEntry]) -> list[MatchCandidate]:
        """Score candidates, best first. Equal scores order by catalog id."""
        scored = [self.score(query, candidate) for candidate in candidates]
        scored.sort(key=lambda c: (-c.score, c.catalog_id))
        return scored

    def decide(self, ranked: Sequence[MatchCandidate]) -> MatchDecision:
        """
        Decide between resolving, keeping candidates for approval, and failing.

        Args:
            ranked: Candidates as returned by rank()
        """
        cfg = self._config

        if not ranked:
            return MatchDecision(status=ResolutionStatus.FAILED, reason="no candidates")

        top = ranked[0]
        if top.score < cfg.floor:
            return MatchDecision(
                status=ResolutionStatus.FAILED,
                best=top,
                reason=f"best score {top.score:.3f} below floor {cfg.floor}",
            )

        second = ranked[1].score if len(ranked) > 1 else None
        if top.score >= cfg.accept_threshold and (second is None or top.score - second >= cfg.margin):
            return MatchDecision(status=ResolutionStatus.RESOLVED, best=top, shortlist=(top,))

        shortlist = tuple(c for c in ranked if c.score >= cfg.floor)[: cfg.max_ambiguous_candidates]
        if top.score < cfg.accept_threshold:
            reason = f"best score {top.score:.3f} below accept threshold {cfg.accept_threshold}"
        else:
            reason = f"margin {top.score - (second or 0.0):.3f} below {cfg.margin}"
        return MatchDecision(
            status=ResolutionStatus.AMBIGUOUS,
            best=top,
            shortlist=shortlist,
            reason=reason,
        )


def _jaccard(a: frozenset[int], b: frozenset[int]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)
