"""Internal dataclasses shared by the search components."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Literal, NamedTuple, Protocol

Tier = Literal[1, 2, 3]


class Identity(NamedTuple):
    """Composite document key. Session ids are only unique within a source."""

    source: str
    session_id: str

    @property
    def key(self) -> str:
        return make_session_key(self.source, self.session_id)


def make_session_key(source: str, session_id: str) -> str:
    return f"{source}:{session_id}"


class SessionLike(Protocol):
    """Anything naming a session by ``id`` and ``source``."""

    @property
    def id(self) -> str: ...

    @property
    def source(self) -> str: ...


@dataclass(slots=True)
class IndexedDocument:
    """One searchable session as stored in the exact index."""

    identity: Identity
    display: str
    project: str
    content: str
    timestamp: int = 0

    @property
    def searchable_text(self) -> str:
        return f"{self.display}\n{self.project}\n{self.content}"


@dataclass(slots=True)
class DocumentMeta:
    """Lightweight in-memory record kept for fuzzy-only hits."""

    display: str
    project: str
    timestamp: int


@dataclass(slots=True)
class ExactRow:
    """A candidate returned by the FTS engine, cast from ``sqlite3.Row``."""

    identity: Identity
    display: str
    project: str
    content: str
    snippet: str
    rank: float
    timestamp: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ExactRow":
        return cls(
            identity=Identity(str(row["source"]), str(row["session_id"])),
            display=str(row["display"] or ""),
            project=str(row["project"] or ""),
            content=str(row["content"] or ""),
            snippet=str(row["snippet"] or ""),
            rank=float(row["engine_rank"] or 0.0),
            timestamp=int(row["timestamp"] or 0),
        )


@dataclass(slots=True)
class ExactSignals:
    exact_literal: bool = False
    exact_phrase: bool = False
    exact_tokens: bool = False


@dataclass(slots=True)
class SearchSignals:
    exact_literal: bool = False
    exact_phrase: bool = False
    exact_tokens: bool = False
    fuzzy: bool = False

    @classmethod
    def from_exact(cls, exact: ExactSignals, fuzzy: bool = False) -> "SearchSignals":
        return cls(
            exact_literal=exact.exact_literal,
            exact_phrase=exact.exact_phrase,
            exact_tokens=exact.exact_tokens,
            fuzzy=fuzzy,
        )


@dataclass(slots=True)
class SearchResult:
    identity: Identity
    display: str
    project: str
    snippet: str
    timestamp: int
    tier: Tier
    score: float
    signals: SearchSignals
    rank: float | None = None

    @property
    def session_id(self) -> str:
        return self.identity.session_id

    @property
    def source(self) -> str:
        return self.identity.source

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "source": self.source,
            "display": self.display,
            "project": self.project,
            "snippet": self.snippet,
            "timestamp": self.timestamp,
            "tier": self.tier,
            "score": self.score,
            "rank": self.rank,
            "signals": {
                "exact_literal": self.signals.exact_literal,
                "exact_phrase": self.signals.exact_phrase,
                "exact_tokens": self.signals.exact_tokens,
                "fuzzy": self.signals.fuzzy,
            },
        }


@dataclass(slots=True)
class SourceCoverage:
    indexed: int = 0
    total: int = 0


@dataclass(slots=True)
class SearchCoverage:
    indexed_sessions: int
    total_sessions: int
    by_source: dict[str, SourceCoverage] = field(default_factory=dict)
    last_updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "indexed_sessions": self.indexed_sessions,
            "total_sessions": self.total_sessions,
            "by_source": {
                source: {"indexed": item.indexed, "total": item.total}
                for source, item in self.by_source.items()
            },
            "last_updated_at": self.last_updated_at,
        }


@dataclass(slots=True)
class CoverageSnapshot:
    partial: bool
    coverage: SearchCoverage


@dataclass(slots=True)
class SearchResponse:
    query: str
    partial: bool
    coverage: SearchCoverage
    results: list[SearchResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "partial": self.partial,
            "coverage": self.coverage.to_dict(),
            "results": [result.to_dict() for result in self.results],
        }


__all__ = [
    "Tier",
    "Identity",
    "make_session_key",
    "SessionLike",
    "IndexedDocument",
    "DocumentMeta",
    "ExactRow",
    "ExactSignals",
    "SearchSignals",
    "SearchResult",
    "SourceCoverage",
    "SearchCoverage",
    "CoverageSnapshot",
    "SearchResponse",
]
