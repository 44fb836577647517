"""Persistent full-text index backed by SQLite FTS5."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Sequence

from session_search.db.migrations import FTS_TABLE, META_TABLE
from session_search.db.sqlite import SQLiteDatabase, iter_rows
from session_search.retrieval.analyzer import HIGHLIGHT_CLOSE, HIGHLIGHT_OPEN, escape_html
from session_search.retrieval.types import ExactRow, Identity, IndexedDocument
from session_search.utils.hashing import content_hash
from session_search.utils.time import now_ms

logger = logging.getLogger(__name__)

# private-use code points never produced by transcript text; swapped for HTML after escaping
_SNIPPET_OPEN = "\ue000"
_SNIPPET_CLOSE = "\ue001"
_SNIPPET_ELLIPSIS = "..."


@dataclass(slots=True)
class RankWeights:
    """Per-column bm25 weights; identity columns never contribute."""

    display: float = 10.0
    project: float = 5.0
    content: float = 1.0

    def as_params(self) -> list[float]:
        return [0.0, 0.0, self.display, self.project, self.content]


class ExactIndex:
    """FTS5 table plus a metadata table, both keyed by ``(source, session_id)``."""

    def __init__(
        self,
        db: SQLiteDatabase,
        weights: RankWeights | None = None,
        snippet_tokens: int = 24,
    ) -> None:
        self.db = db
        self.weights = weights or RankWeights()
        self.snippet_tokens = snippet_tokens

    def upsert(self, document: IndexedDocument) -> bool:
        """Replace the row for ``document.identity``; returns False when nothing changed."""
        identity = document.identity
        digest = content_hash(document.display, document.project, document.content)
        existing = self.db.query_one(
            f"SELECT content_hash, session_timestamp FROM {META_TABLE} WHERE session_id = ? AND source = ?",
            [identity.session_id, identity.source],
        )
        if (
            existing is not None
            and existing["content_hash"] == digest
            and int(existing["session_timestamp"] or 0) == document.timestamp
        ):
            logger.debug("Skipping unchanged session %s", identity.key)
            return False

        with self.db.transaction() as cursor:
            cursor.execute(
                f"DELETE FROM {FTS_TABLE} WHERE session_id = ? AND source = ?",
                [identity.session_id, identity.source],
            )
            cursor.execute(
                f"INSERT INTO {FTS_TABLE} (session_id, source, display, project, content) VALUES (?, ?, ?, ?, ?)",
                [identity.session_id, identity.source, document.display, document.project, document.content],
            )
            cursor.execute(
                f"""
                INSERT OR REPLACE INTO {META_TABLE}
                  (session_id, source, content_hash, session_timestamp, last_indexed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [identity.session_id, identity.source, digest, document.timestamp, now_ms()],
            )
        return True

    def remove(self, session_id: str, source: str | None = None) -> list[Identity]:
        """Delete one identity, or every source's row for ``session_id`` when ``source`` is None."""
        if source is not None:
            where, params = "session_id = ? AND source = ?", [session_id, source]
        else:
            where, params = "session_id = ?", [session_id]
        rows = self.db.query(
            f"""
            SELECT source FROM {META_TABLE} WHERE {where}
            UNION
            SELECT source FROM {FTS_TABLE} WHERE {where}
            """,
            params + params,
        )
        with self.db.transaction() as cursor:
            cursor.execute(f"DELETE FROM {FTS_TABLE} WHERE {where}", params)
            cursor.execute(f"DELETE FROM {META_TABLE} WHERE {where}", params)
        return [Identity(str(row["source"]), session_id) for row in rows]

    def contains(self, session_id: str, source: str | None = None) -> bool:
        if source is not None:
            row = self.db.query_one(
                f"SELECT 1 FROM {META_TABLE} WHERE session_id = ? AND source = ?",
                [session_id, source],
            )
        else:
            row = self.db.query_one(f"SELECT 1 FROM {META_TABLE} WHERE session_id = ?", [session_id])
        return row is not None

    def count(self, session_id: str | None = None, source: str | None = None) -> int:
        """Number of FTS rows, optionally for one identity."""
        if session_id is None:
            row = self.db.query_one(f"SELECT COUNT(*) AS n FROM {FTS_TABLE}")
        else:
            row = self.db.query_one(
                f"SELECT COUNT(*) AS n FROM {FTS_TABLE} WHERE session_id = ? AND source = ?",
                [session_id, source],
            )
        return int(row["n"]) if row else 0

    def query(
        self,
        fts_query: str,
        source: str | None = None,
        candidate_limit: int = 300,
    ) -> list[ExactRow]:
        """Run an FTS5 MATCH ordered by weighted bm25 (lower is better).

        ``sqlite3.Error`` from a malformed expression is left to the caller.
        """
        if not fts_query.strip():
            return []
        sql = f"""
            SELECT
              {FTS_TABLE}.session_id AS session_id,
              {FTS_TABLE}.source AS source,
              {FTS_TABLE}.display AS display,
              {FTS_TABLE}.project AS project,
              {FTS_TABLE}.content AS content,
              snippet({FTS_TABLE}, -1, ?, ?, ?, ?) AS snippet,
              bm25({FTS_TABLE}, ?, ?, ?, ?, ?) AS engine_rank,
              COALESCE(m.session_timestamp, 0) AS timestamp
            FROM {FTS_TABLE}
            LEFT JOIN {META_TABLE} m
              ON {FTS_TABLE}.session_id = m.session_id AND {FTS_TABLE}.source = m.source
            WHERE {FTS_TABLE} MATCH ?
        """
        params: list[object] = [
            _SNIPPET_OPEN,
            _SNIPPET_CLOSE,
            _SNIPPET_ELLIPSIS,
            self.snippet_tokens,
            *self.weights.as_params(),
            fts_query,
        ]
        if source:
            sql += f" AND {FTS_TABLE}.source = ?"
            params.append(source)
        sql += " ORDER BY engine_rank LIMIT ?"
        params.append(max(1, int(candidate_limit)))

        rows = self.db.query(sql, params)
        results: list[ExactRow] = []
        for row in rows:
            candidate = ExactRow.from_row(row)
            candidate.snippet = render_snippet(candidate.snippet)
            results.append(candidate)
        return results

    def iter_documents(self) -> Iterator[IndexedDocument]:
        """Yield every persisted document with its recorded timestamp."""
        cursor = self.db.execute(
            f"""
            SELECT
              f.session_id AS session_id,
              f.source AS source,
              f.display AS display,
              f.project AS project,
              f.content AS content,
              COALESCE(m.session_timestamp, 0) AS timestamp
            FROM {FTS_TABLE} f
            LEFT JOIN {META_TABLE} m ON f.session_id = m.session_id AND f.source = m.source
            """
        )
        for row in iter_rows(cursor):
            yield IndexedDocument(
                identity=Identity(str(row["source"]), str(row["session_id"])),
                display=str(row["display"] or ""),
                project=str(row["project"] or ""),
                content=str(row["content"] or ""),
                timestamp=int(row["timestamp"] or 0),
            )

    def indexed_identities(self) -> list[Identity]:
        rows = self.db.query(f"SELECT session_id, source FROM {META_TABLE}")
        return [Identity(str(row["source"]), str(row["session_id"])) for row in rows]

    def fetch_contents(self, identities: Sequence[Identity]) -> dict[Identity, str]:
        contents: dict[Identity, str] = {}
        for identity in identities:
            row = self.db.query_one(
                f"SELECT content FROM {FTS_TABLE} WHERE session_id = ? AND source = ?",
                [identity.session_id, identity.source],
            )
            if row is not None:
                contents[identity] = str(row["content"] or "")
        return contents


def render_snippet(raw: str) -> str:
    """Escape FTS snippet text and turn sentinel markers into highlight markup."""
    escaped = escape_html(raw)
    return escaped.replace(_SNIPPET_OPEN, HIGHLIGHT_OPEN).replace(_SNIPPET_CLOSE, HIGHLIGHT_CLOSE)


__all__ = ["ExactIndex", "RankWeights", "render_snippet"]
