"""In-memory typo-tolerant index mirroring the exact index corpus."""

from __future__ import annotations

from bisect import bisect_left
from typing import Iterable

from rapidfuzz import process
from rapidfuzz.distance import OSA

from session_search.retrieval.analyzer import tokenize
from session_search.retrieval.types import Identity

MIN_TYPO_TOKEN_LENGTH = 3
LONG_TOKEN_LENGTH = 6

EXACT_TERM_SCORE = 1.0
PREFIX_BASE_SCORE = 0.5
TYPO_BASE_SCORE = 0.5
TYPO_EDIT_PENALTY = 0.15


class FuzzyIndex:
    """Inverted term index with prefix and edit-distance term expansion.

    Every query token must be matched by some term of a document; documents
    are ranked by the summed quality of their best term per query token.
    """

    def __init__(self, max_typo_terms: int = 64) -> None:
        self.max_typo_terms = max_typo_terms
        self._terms_by_doc: dict[Identity, frozenset[str]] = {}
        self._postings: dict[str, set[Identity]] = {}
        self._vocabulary: list[str] | None = None

    def __len__(self) -> int:
        return len(self._terms_by_doc)

    def __contains__(self, identity: object) -> bool:
        return identity in self._terms_by_doc

    def clear(self) -> None:
        self._terms_by_doc.clear()
        self._postings.clear()
        self._vocabulary = None

    def add(self, identity: Identity, text: str) -> None:
        if identity in self._terms_by_doc:
            self.remove(identity)
        terms = frozenset(tokenize(text))
        self._terms_by_doc[identity] = terms
        for term in terms:
            postings = self._postings.get(term)
            if postings is None:
                self._postings[term] = {identity}
                self._vocabulary = None
            else:
                postings.add(identity)

    def remove(self, identity: Identity) -> bool:
        terms = self._terms_by_doc.pop(identity, None)
        if terms is None:
            return False
        for term in terms:
            postings = self._postings.get(term)
            if postings is None:
                continue
            postings.discard(identity)
            if not postings:
                del self._postings[term]
                self._vocabulary = None
        return True

    def query(self, raw_query: str, limit: int = 300) -> list[Identity]:
        tokens = list(dict.fromkeys(tokenize(raw_query)))
        if not tokens or not self._terms_by_doc or limit <= 0:
            return []
        vocabulary = self._sorted_vocabulary()

        totals: dict[Identity, float] | None = None
        for token in tokens:
            per_doc: dict[Identity, float] = {}
            for term, term_score in self._expand(token, vocabulary).items():
                for identity in self._postings.get(term, ()):
                    if term_score > per_doc.get(identity, 0.0):
                        per_doc[identity] = term_score
            if totals is None:
                totals = per_doc
            else:
                totals = {
                    identity: totals[identity] + score
                    for identity, score in per_doc.items()
                    if identity in totals
                }
            if not totals:
                return []

        ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        return [identity for identity, _ in ranked[:limit]]

    def _sorted_vocabulary(self) -> list[str]:
        if self._vocabulary is None:
            self._vocabulary = sorted(self._postings)
        return self._vocabulary

    def _expand(self, token: str, vocabulary: list[str]) -> dict[str, float]:
        """Map vocabulary terms matching ``token`` to a match quality in (0, 1]."""
        matches: dict[str, float] = {}
        if token in self._postings:
            matches[token] = EXACT_TERM_SCORE

        for term in _prefixed(vocabulary, token):
            if term != token:
                matches[term] = PREFIX_BASE_SCORE + 0.4 * len(token) / len(term)

        if len(token) >= MIN_TYPO_TOKEN_LENGTH:
            max_edits = 2 if len(token) >= LONG_TOKEN_LENGTH else 1
            for term, distance, _ in process.extract(
                token,
                vocabulary,
                scorer=OSA.distance,
                score_cutoff=max_edits,
                limit=self.max_typo_terms,
            ):
                if distance == 0:
                    continue
                typo_score = TYPO_BASE_SCORE - TYPO_EDIT_PENALTY * distance
                if typo_score > matches.get(term, 0.0):
                    matches[term] = typo_score
        return matches


def _prefixed(vocabulary: list[str], prefix: str) -> Iterable[str]:
    for position in range(bisect_left(vocabulary, prefix), len(vocabulary)):
        term = vocabulary[position]
        if not term.startswith(prefix):
            break
        yield term


__all__ = ["FuzzyIndex"]
