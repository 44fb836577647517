"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

ChangeKind = Literal["changed", "deleted"]


@dataclass(slots=True, frozen=True)
class SessionInfo:
    """Catalog entry for one session as reported by the session catalog."""

    id: str
    source: str
    display: str = ""
    project: str = ""
    timestamp: int = 0


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """A transcript file was written or removed."""

    session_id: str
    file_path: Path | None
    source: str
    kind: ChangeKind = "changed"


@dataclass(slots=True)
class IngestStats:
    """Aggregated reindex statistics for one sweep or backfill run."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
        }


__all__ = ["ChangeKind", "SessionInfo", "ChangeEvent", "IngestStats"]
