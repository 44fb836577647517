"""Retrieval orchestration components."""

from .exact_index import ExactIndex, RankWeights
from .fuzzy_index import FuzzyIndex
from .coverage import CoverageTracker, compute_coverage
from .hybrid import rank_merged_results
from .search import SearchService
from .types import Identity, SearchResponse, SearchResult

__all__ = [
    "ExactIndex",
    "RankWeights",
    "FuzzyIndex",
    "CoverageTracker",
    "compute_coverage",
    "rank_merged_results",
    "SearchService",
    "Identity",
    "SearchResponse",
    "SearchResult",
]
