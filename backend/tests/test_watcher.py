"""Tests for watcher path handling and debouncing."""

from __future__ import annotations

import asyncio
from pathlib import Path

from session_search.ingest.events import ChangeBus
from session_search.ingest.types import ChangeEvent
from session_search.ingest.watcher import (
    SessionWatcher,
    detect_source,
    is_history_file,
    session_id_from_path,
)

ROOTS = {
    "claude": Path("/home/u/.claude/projects"),
    "codex": Path("/home/u/.codex/sessions"),
}


def test_detect_source_by_root() -> None:
    assert detect_source(Path("/home/u/.claude/projects/app/abc.jsonl"), ROOTS) == "claude"
    assert detect_source(Path("/home/u/.codex/sessions/2025/01/x.jsonl"), ROOTS) == "codex"
    assert detect_source(Path("/tmp/other.jsonl"), ROOTS) is None


def test_session_ids_from_filenames() -> None:
    rollout = Path("rollout-2025-01-01T10-00-00-0199a1b2-c3d4-7e5f-8a9b-0c1d2e3f4a5b.jsonl")
    assert session_id_from_path(rollout, "codex") == "0199a1b2-c3d4-7e5f-8a9b-0c1d2e3f4a5b"
    assert session_id_from_path(Path("plain-name.jsonl"), "codex") == "plain-name"
    assert session_id_from_path(Path("0f1e2d3c-uuid.jsonl"), "claude") == "0f1e2d3c-uuid"


def test_history_files() -> None:
    assert is_history_file(Path("/home/u/.claude/history.jsonl"))
    assert is_history_file(Path("/home/u/.factory/history.json"))
    assert not is_history_file(Path("/home/u/.claude/projects/a.jsonl"))


def test_debounce_coalesces_bursts() -> None:
    bus = ChangeBus()
    events: list[ChangeEvent] = []
    history: list[int] = []
    bus.on_session_change(events.append)
    bus.on_history_change(lambda: history.append(1))
    watcher = SessionWatcher(ROOTS, bus, session_debounce_s=0.01, history_debounce_s=0.01)
    transcript = Path("/home/u/.claude/projects/app/abc.jsonl")

    async def run():
        for _ in range(5):
            watcher.schedule(transcript)
        watcher.schedule(Path("/home/u/.claude/history.jsonl"))
        watcher.schedule(Path("/home/u/.claude/projects/app/notes.txt"))
        await asyncio.sleep(0.1)

    asyncio.run(run())
    assert events == [ChangeEvent("abc", transcript, "claude", "changed")]
    assert history == [1]


def test_latest_kind_wins() -> None:
    bus = ChangeBus()
    events: list[ChangeEvent] = []
    bus.on_session_change(events.append)
    watcher = SessionWatcher(ROOTS, bus, session_debounce_s=0.01)
    transcript = Path("/home/u/.codex/sessions/rollout-x-abcd-1234.jsonl")

    async def run():
        watcher.schedule(transcript, "changed")
        watcher.schedule(transcript, "deleted")
        await asyncio.sleep(0.1)

    asyncio.run(run())
    assert [(e.session_id, e.kind) for e in events] == [("abcd-1234", "deleted")]
