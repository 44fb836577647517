"""Tier scoring and ordering for merged exact and fuzzy hits."""

from __future__ import annotations

from functools import cmp_to_key
from typing import Sequence

from session_search.retrieval.types import ExactSignals, SearchResult, Tier

TIER_LITERAL_OR_PHRASE: Tier = 1
TIER_TOKENS: Tier = 2
TIER_FUZZY_ONLY: Tier = 3

# Base scores per tier. Adjustments are clamped so the ranges never overlap:
# tier 1 in [2600, 3410], tier 2 in [1600, 2410], tier 3 in [1, 1000].
_TIER_BASE = {TIER_LITERAL_OR_PHRASE: 3000.0, TIER_TOKENS: 2000.0, TIER_FUZZY_ONLY: 1000.0}
MAX_RANK_ADJUSTMENT = 400.0
MAX_FUZZY_POSITION = 999
FUZZY_CORROBORATION_BONUS = 10.0


def assign_tier(signals: ExactSignals) -> Tier:
    """Tier 1 for a literal or phrase hit, otherwise tier 2 (engine token match)."""
    if signals.exact_literal or signals.exact_phrase:
        return TIER_LITERAL_OR_PHRASE
    return TIER_TOKENS


def exact_score(tier: Tier, rank: float) -> float:
    """Large constant minus the engine rank; bm25 ranks are negative, lower is better."""
    adjustment = max(-MAX_RANK_ADJUSTMENT, min(MAX_RANK_ADJUSTMENT, rank))
    return _TIER_BASE[tier] - adjustment


def fuzzy_score(position: int) -> float:
    """Earlier fuzzy hits score higher; always below every exact tier."""
    return _TIER_BASE[TIER_FUZZY_ONLY] - min(max(position, 0), MAX_FUZZY_POSITION)


def _compare(a: SearchResult, b: SearchResult) -> int:
    if a.tier != b.tier:
        return a.tier - b.tier

    if a.tier in (TIER_LITERAL_OR_PHRASE, TIER_TOKENS):
        # recency outranks bm25 among exact hits of equal quality
        for attr in ("exact_literal", "exact_phrase", "exact_tokens"):
            left, right = getattr(a.signals, attr), getattr(b.signals, attr)
            if left != right:
                return -1 if left else 1
        if a.timestamp != b.timestamp:
            return -1 if a.timestamp > b.timestamp else 1
        if a.rank is not None and b.rank is not None and a.rank != b.rank:
            return -1 if a.rank < b.rank else 1
        return _desc(a.score, b.score)

    if a.score != b.score:
        return _desc(a.score, b.score)
    return _desc(a.timestamp, b.timestamp)


def _desc(left: float, right: float) -> int:
    if left == right:
        return 0
    return -1 if left > right else 1


def rank_merged_results(results: Sequence[SearchResult]) -> list[SearchResult]:
    """Return a new list in the final display order; the input is not mutated."""
    return sorted(results, key=cmp_to_key(_compare))


def clamp_limit(limit: int | None, default: int = 50, maximum: int = 100) -> int:
    if limit is None:
        limit = default
    return max(1, min(int(limit), maximum))


def candidate_limit(limit: int, multiplier: int = 10, floor: int = 300) -> int:
    """Exact candidates to fetch so ordering and fuzzy merging have room to work."""
    return max(limit * multiplier, floor)


__all__ = [
    "TIER_LITERAL_OR_PHRASE",
    "TIER_TOKENS",
    "TIER_FUZZY_ONLY",
    "FUZZY_CORROBORATION_BONUS",
    "assign_tier",
    "exact_score",
    "fuzzy_score",
    "rank_merged_results",
    "clamp_limit",
    "candidate_limit",
]
