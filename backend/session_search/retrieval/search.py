"""Search orchestration: the explicit service owning storage, indexes and coverage."""

from __future__ import annotations

import sqlite3
import threading
import time
from typing import Callable, Iterable

from session_search.core.config import Settings
from session_search.core.logging import get_logger, log_fields
from session_search.core.metrics import DIRTY_SESSIONS, FUZZY_FAILURES, INDEX_SIZE, SEARCH_LATENCY
from session_search.db.sqlite import SQLiteDatabase
from session_search.retrieval.analyzer import (
    build_exact_query,
    determine_exact_signals,
    should_use_fuzzy,
    tokenize,
)
from session_search.retrieval.coverage import CoverageTracker
from session_search.retrieval.exact_index import ExactIndex, RankWeights
from session_search.retrieval.fuzzy_index import FuzzyIndex
from session_search.retrieval.hybrid import (
    FUZZY_CORROBORATION_BONUS,
    TIER_FUZZY_ONLY,
    assign_tier,
    candidate_limit,
    clamp_limit,
    exact_score,
    fuzzy_score,
    rank_merged_results,
)
from session_search.retrieval.snippet import build_fuzzy_snippet
from session_search.retrieval.types import (
    CoverageSnapshot,
    DocumentMeta,
    ExactRow,
    Identity,
    IndexedDocument,
    SearchResponse,
    SearchResult,
    SearchSignals,
    SessionLike,
)

logger = get_logger(__name__)


class SearchService:
    """Hybrid exact+fuzzy session search with coverage accounting.

    The SQLite index is the only durable state. The fuzzy index, the
    per-document metadata map and the coverage sets are caches rebuilt from it
    by :meth:`init`, so dropping them is always safe. Public methods are
    serialized with a re-entrant lock and degrade to empty results instead of
    raising on storage or query errors. The dirty queue has its own short-held
    lock so it can be marked from the event loop while a search runs; it is
    always taken after the main lock, never before.
    """

    def __init__(self, settings: Settings, db: SQLiteDatabase | None = None) -> None:
        self.settings = settings
        self.db = db or SQLiteDatabase(settings.db_path)
        self.exact = ExactIndex(
            self.db,
            weights=RankWeights(
                display=settings.display_weight,
                project=settings.project_weight,
                content=settings.content_weight,
            ),
            snippet_tokens=settings.snippet_tokens,
        )
        self.fuzzy = FuzzyIndex()
        self.tracker = CoverageTracker()
        self._meta: dict[Identity, DocumentMeta] = {}
        self._lock = threading.RLock()
        self._dirty_lock = threading.Lock()
        self._initialized = False

    # Lifecycle ----------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self) -> None:
        """Open the database, migrate its schema and rebuild in-memory mirrors."""
        with self._lock:
            if self._initialized:
                return
            self.db.connect()
            version = self.db.ensure_schema()
            self._rebuild_from_storage()
            self._initialized = True
            logger.info(
                "Search index ready: %s sessions",
                len(self.tracker.indexed),
                extra=log_fields(db_path=str(self.db.db_path), schema_version=version),
            )

    def close(self) -> None:
        with self._lock, self._dirty_lock:
            self.db.close()
            self.tracker.reset()
            self.fuzzy.clear()
            self._meta.clear()
            self._initialized = False
            DIRTY_SESSIONS.set(0)

    def _rebuild_from_storage(self) -> None:
        self.tracker.load_indexed(self.exact.indexed_identities())
        self.fuzzy.clear()
        self._meta.clear()
        for document in self.exact.iter_documents():
            self._meta[document.identity] = DocumentMeta(
                display=document.display,
                project=document.project,
                timestamp=document.timestamp,
            )
            self._fuzzy_call("add", self.fuzzy.add, document.identity, document.searchable_text)
        INDEX_SIZE.set(len(self.tracker.indexed))

    # Write path ---------------------------------------------------------

    def index_session(
        self,
        session_id: str,
        source: str,
        display: str,
        project: str,
        content: str,
        timestamp: int = 0,
    ) -> bool:
        """Replace the indexed document for ``(source, session_id)``.

        Returns False when the write failed; the session is then left dirty so
        the reindex sweep retries it.
        """
        identity = Identity(source, session_id)
        document = IndexedDocument(
            identity=identity,
            display=display or "",
            project=project or "",
            content=content or "",
            timestamp=int(timestamp or 0),
        )
        with self._lock:
            if not self._initialized:
                logger.warning("index_session called before init", extra=log_fields(session_id=session_id))
                return False
            try:
                changed = self.exact.upsert(document)
            except sqlite3.Error:
                logger.exception(
                    "Failed to index session",
                    extra=log_fields(session_id=session_id, source=source),
                )
                self.mark_dirty(session_id)
                return False

            self.tracker.mark_indexed(identity)
            self._meta[identity] = DocumentMeta(
                display=document.display,
                project=document.project,
                timestamp=document.timestamp,
            )
            if changed or identity not in self.fuzzy:
                self._fuzzy_call("add", self.fuzzy.add, identity, document.searchable_text)
            self.clear_dirty(session_id)
            INDEX_SIZE.set(len(self.tracker.indexed))
            return True

    def remove_indexed_session(self, session_id: str, source: str | None = None) -> list[Identity]:
        """Remove a session from both indexes and the expected/dirty sets.

        Without ``source`` every source sharing ``session_id`` is removed.
        """
        with self._lock:
            if not self._initialized:
                return []
            try:
                removed = set(self.exact.remove(session_id, source))
            except sqlite3.Error:
                logger.exception(
                    "Failed to remove session",
                    extra=log_fields(session_id=session_id, source=source),
                )
                return []
            removed.update(
                identity
                for identity in list(self.tracker.indexed) + list(self._meta)
                if identity.session_id == session_id and (source is None or identity.source == source)
            )
            for identity in removed:
                self.tracker.mark_removed(identity)
                self._meta.pop(identity, None)
                self._fuzzy_call("remove", self.fuzzy.remove, identity)
            self.tracker.forget_expected(session_id, source)
            self.clear_dirty(session_id)
            INDEX_SIZE.set(len(self.tracker.indexed))
            return sorted(removed)

    def is_session_indexed(self, session_id: str, source: str | None = None) -> bool:
        with self._lock:
            if not self._initialized:
                return False
            try:
                return self.exact.contains(session_id, source)
            except sqlite3.Error:
                logger.exception("Index lookup failed", extra=log_fields(session_id=session_id))
                return False

    # Coverage -----------------------------------------------------------

    def set_expected(self, sessions: Iterable[SessionLike]) -> None:
        with self._lock:
            self.tracker.set_expected((session.id, session.source) for session in sessions)

    def expected_sessions(self) -> list[Identity]:
        with self._lock:
            return self.tracker.expected_identities()

    def mark_dirty(self, session_id: str) -> None:
        with self._dirty_lock:
            self.tracker.mark_dirty(session_id)
            DIRTY_SESSIONS.set(len(self.tracker.dirty))

    def clear_dirty(self, session_id: str) -> None:
        with self._dirty_lock:
            self.tracker.clear_dirty(session_id)
            DIRTY_SESSIONS.set(len(self.tracker.dirty))

    def dirty_sessions(self) -> list[str]:
        """Snapshot of queued session ids; entries stay queued until reindexed."""
        with self._dirty_lock:
            return self.tracker.dirty_snapshot()

    def drain_dirty(self) -> list[str]:
        """Return and clear every queued session id."""
        with self._dirty_lock:
            drained = self.tracker.drain_dirty()
            DIRTY_SESSIONS.set(0)
            return drained

    def coverage(self) -> CoverageSnapshot:
        with self._lock, self._dirty_lock:
            return self.tracker.snapshot()

    # Read path ----------------------------------------------------------

    def search(
        self,
        query: str,
        source: str | None = None,
        fuzzy: bool | None = None,
        limit: int | None = None,
    ) -> SearchResponse:
        """Merge exact and fuzzy hits into one tiered, recency-aware ranking."""
        started = time.perf_counter()
        outcome = "ok"
        with self._lock:
            snapshot = self.coverage()
            response = SearchResponse(query=query, partial=snapshot.partial, coverage=snapshot.coverage)
            try:
                response.results = self._search_locked(query, source, fuzzy, limit)
            except sqlite3.Error as exc:
                outcome = "query_error"
                logger.warning(
                    "Exact query failed; returning no results: %s",
                    exc,
                    extra=log_fields(query=query, source=source),
                )
            except Exception:
                outcome = "error"
                logger.exception("Search failed", extra=log_fields(query=query, source=source))
        SEARCH_LATENCY.labels(outcome=outcome).observe(time.perf_counter() - started)
        return response

    def _search_locked(
        self,
        query: str,
        source: str | None,
        fuzzy: bool | None,
        limit: int | None,
    ) -> list[SearchResult]:
        normalized = query.strip()
        if not self._initialized or not normalized:
            return []
        fts_query = build_exact_query(normalized)
        if not fts_query:
            return []

        result_limit = clamp_limit(limit, self.settings.default_limit, self.settings.max_limit)
        merged: dict[Identity, SearchResult] = {}

        rows = self.exact.query(
            fts_query,
            source=source,
            candidate_limit=candidate_limit(
                result_limit,
                multiplier=self.settings.candidate_multiplier,
                floor=self.settings.candidate_floor,
            ),
        )
        for row in rows:
            merged[row.identity] = _exact_result(normalized, row)

        include_fuzzy = self.settings.fuzzy_enabled if fuzzy is None else fuzzy
        if include_fuzzy and should_use_fuzzy(normalized):
            self._merge_fuzzy(normalized, source, merged)

        ranked = rank_merged_results(list(merged.values()))[:result_limit]
        self._fill_fuzzy_snippets(ranked, tokenize(normalized))
        return ranked

    def _merge_fuzzy(self, query: str, source: str | None, merged: dict[Identity, SearchResult]) -> None:
        hits = self._fuzzy_call("query", self.fuzzy.query, query, self.settings.fuzzy_limit)
        if not hits:
            return
        position = 0
        for identity in hits:
            meta = self._meta.get(identity)
            if meta is None:
                continue
            if source and identity.source != source:
                continue
            existing = merged.get(identity)
            if existing is not None:
                existing.signals.fuzzy = True
                existing.score += FUZZY_CORROBORATION_BONUS
                continue
            merged[identity] = SearchResult(
                identity=identity,
                display=meta.display,
                project=meta.project,
                snippet="",
                timestamp=meta.timestamp,
                tier=TIER_FUZZY_ONLY,
                score=fuzzy_score(position),
                signals=SearchSignals(fuzzy=True),
            )
            position += 1

    def _fill_fuzzy_snippets(self, results: list[SearchResult], tokens: list[str]) -> None:
        fuzzy_only = [result for result in results if result.tier == TIER_FUZZY_ONLY]
        if not fuzzy_only:
            return
        try:
            contents = self.exact.fetch_contents([result.identity for result in fuzzy_only])
        except sqlite3.Error:
            logger.exception("Failed to load content for fuzzy snippets")
            contents = {}
        for result in fuzzy_only:
            text = contents.get(result.identity) or f"{result.display}\n{result.project}"
            result.snippet = build_fuzzy_snippet(text, tokens)

    def _fuzzy_call(self, operation: str, func: Callable, *args):
        """Run a fuzzy-index operation; failures are logged and never reach callers."""
        try:
            return func(*args)
        except Exception:
            FUZZY_FAILURES.labels(operation=operation).inc()
            logger.exception("Fuzzy index %s failed", operation)
            return None


def _exact_result(query: str, row: ExactRow) -> SearchResult:
    exact = determine_exact_signals(query, f"{row.display}\n{row.project}\n{row.content}")
    tier = assign_tier(exact)
    return SearchResult(
        identity=row.identity,
        display=row.display,
        project=row.project,
        snippet=row.snippet,
        timestamp=row.timestamp,
        tier=tier,
        score=exact_score(tier, row.rank),
        signals=SearchSignals.from_exact(exact),
        rank=row.rank,
    )


__all__ = ["SearchService"]
