"""Expected-versus-indexed accounting for search completeness."""

from __future__ import annotations

from typing import Collection, Iterable, Mapping

from session_search.retrieval.types import (
    CoverageSnapshot,
    Identity,
    SearchCoverage,
    SourceCoverage,
    make_session_key,
)
from session_search.utils.time import now_ms


def compute_coverage(
    expected_by_source: Mapping[str, Collection[str]],
    indexed: Collection[Identity | str],
    dirty_count: int,
) -> CoverageSnapshot:
    """Count expected sessions present in ``indexed``.

    ``indexed`` may hold :class:`Identity` tuples, ``"source:id"`` keys or bare
    session ids; all three forms are accepted for each expected entry. The
    snapshot is partial whenever anything is missing or ``dirty_count`` > 0.
    """
    by_source: dict[str, SourceCoverage] = {}
    total_sessions = 0
    indexed_sessions = 0

    for source, session_ids in expected_by_source.items():
        indexed_for_source = 0
        for session_id in session_ids:
            if (
                Identity(source, session_id) in indexed
                or make_session_key(source, session_id) in indexed
                or session_id in indexed
            ):
                indexed_for_source += 1
        by_source[source] = SourceCoverage(indexed=indexed_for_source, total=len(session_ids))
        total_sessions += len(session_ids)
        indexed_sessions += indexed_for_source

    return CoverageSnapshot(
        partial=indexed_sessions < total_sessions or dirty_count > 0,
        coverage=SearchCoverage(
            indexed_sessions=indexed_sessions,
            total_sessions=total_sessions,
            by_source=by_source,
            last_updated_at=now_ms(),
        ),
    )


class CoverageTracker:
    """Owns the ExpectedSet, IndexedSet and DirtySet.

    The dirty set is keyed by bare session id: marking one source's session
    dirty also queues any other source sharing that id for a (redundant) reindex.
    """

    def __init__(self) -> None:
        self.expected: dict[str, set[str]] = {}
        self.indexed: set[Identity] = set()
        self.dirty: set[str] = set()

    def reset(self) -> None:
        self.expected = {}
        self.indexed = set()
        self.dirty = set()

    def set_expected(self, sessions: Iterable[tuple[str, str]]) -> None:
        """Replace the ExpectedSet wholesale from ``(session_id, source)`` pairs."""
        expected: dict[str, set[str]] = {}
        for session_id, source in sessions:
            expected.setdefault(source, set()).add(session_id)
        self.expected = expected

    def forget_expected(self, session_id: str, source: str | None = None) -> None:
        if source is not None:
            self.expected.get(source, set()).discard(session_id)
            return
        for session_ids in self.expected.values():
            session_ids.discard(session_id)

    def expected_identities(self) -> list[Identity]:
        return [
            Identity(source, session_id)
            for source, session_ids in self.expected.items()
            for session_id in session_ids
        ]

    def load_indexed(self, identities: Iterable[Identity]) -> None:
        self.indexed = set(identities)

    def mark_indexed(self, identity: Identity) -> None:
        self.indexed.add(identity)

    def mark_removed(self, identity: Identity) -> None:
        self.indexed.discard(identity)

    def is_indexed(self, session_id: str, source: str | None = None) -> bool:
        if source is not None:
            return Identity(source, session_id) in self.indexed
        return any(identity.session_id == session_id for identity in self.indexed)

    def mark_dirty(self, session_id: str) -> None:
        self.dirty.add(session_id)

    def clear_dirty(self, session_id: str) -> None:
        self.dirty.discard(session_id)

    def dirty_snapshot(self) -> list[str]:
        return sorted(self.dirty)

    def drain_dirty(self) -> list[str]:
        drained = sorted(self.dirty)
        self.dirty.clear()
        return drained

    def snapshot(self) -> CoverageSnapshot:
        return compute_coverage(self.expected, self.indexed, len(self.dirty))


__all__ = ["compute_coverage", "CoverageTracker"]
