"""
Title matching: scoring catalog candidates and deciding outcomes.
"""

from game_library.matching.matcher import (
    MatchCandidate,
    MatchDecision,
    Matcher,
    MatchQuery,
    MatchSignals,
    title_similarity,
)

__all__ = [
    "MatchCandidate",
    "MatchDecision",
    "MatchQuery",
    "MatchSignals",
    "Matcher",
    "title_similarity",
]
