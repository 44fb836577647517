"""Narrow interfaces to the session catalog and transcript reader."""

from __future__ import annotations

from typing import Protocol, Sequence

from session_search.ingest.types import SessionInfo


class SessionCatalog(Protocol):
    async def list_expected_sessions(self) -> Sequence[SessionInfo]:
        """Every session the catalog currently knows about, across all sources."""
        ...


class ContentAccessor(Protocol):
    async def get_full_content(self, session_id: str, source: str) -> str:
        """Flattened searchable text for one transcript."""
        ...


__all__ = ["SessionCatalog", "ContentAccessor"]
