"""Tests for the ingest pipeline using in-memory collaborators."""

from __future__ import annotations

import asyncio
import threading
import time

from session_search.ingest.events import ChangeBus
from session_search.ingest.pipeline import IngestPipeline, SessionMetadataCache
from session_search.ingest.types import ChangeEvent, SessionInfo
from session_search.retrieval.search import SearchService
from session_search.retrieval.types import Identity


class FakeCatalog:
    def __init__(self, sessions: list[SessionInfo]) -> None:
        self.sessions = list(sessions)
        self.calls = 0

    async def list_expected_sessions(self) -> list[SessionInfo]:
        self.calls += 1
        return list(self.sessions)


class FakeContent:
    def __init__(self, texts: dict[tuple[str, str], str]) -> None:
        self.texts = dict(texts)
        self.failing: set[str] = set()
        self.failing_sources: set[str] = set()

    async def get_full_content(self, session_id: str, source: str) -> str:
        if session_id in self.failing or source in self.failing_sources:
            raise OSError(f"cannot read {session_id}")
        return self.texts.get((source, session_id), "")


def _pipeline(service: SearchService, sessions, texts) -> tuple[IngestPipeline, FakeCatalog, FakeContent]:
    catalog = FakeCatalog(sessions)
    content = FakeContent(texts)
    return IngestPipeline(service, catalog, content, bus=ChangeBus()), catalog, content


def test_backfill_indexes_expected_sessions(service: SearchService) -> None:
    sessions = [SessionInfo("a", "claude", "Alpha", "p", 10), SessionInfo("b", "codex", "Beta", "p", 20)]
    pipeline, _, content = _pipeline(
        service,
        sessions,
        {("claude", "a"): "alpha transcript", ("codex", "b"): "beta transcript"},
    )
    content.failing.add("b")

    async def run():
        await pipeline.refresh_expected()
        return await pipeline.backfill()

    stats = asyncio.run(run())
    assert stats.processed == 1
    assert stats.failed == 1
    assert service.is_session_indexed("a", "claude")
    assert service.coverage().partial is True
    assert service.search("alpha").results[0].timestamp == 10


def test_backfill_skips_already_indexed(service: SearchService) -> None:
    service.index_session("a", "claude", "", "", "old")
    pipeline, _, _ = _pipeline(service, [SessionInfo("a", "claude")], {("claude", "a"): "new text"})
    stats = asyncio.run(pipeline.backfill())
    assert stats.skipped == 1
    assert stats.processed == 0


def test_change_event_reindexes_and_clears_dirty(service: SearchService) -> None:
    sessions = [SessionInfo("a", "claude", "Alpha", "p", 10)]
    pipeline, _, content = _pipeline(service, sessions, {("claude", "a"): "first draft"})
    asyncio.run(pipeline.backfill())

    content.texts[("claude", "a")] = "second draft"
    ok = asyncio.run(pipeline.handle_change(ChangeEvent("a", None, "claude")))
    assert ok is True
    assert service.dirty_sessions() == []
    assert service.search("first").results == []
    assert len(service.search("second").results) == 1


def test_failed_change_stays_dirty_until_sweep(service: SearchService) -> None:
    sessions = [SessionInfo("a", "claude")]
    pipeline, _, content = _pipeline(service, sessions, {("claude", "a"): "text"})
    content.failing.add("a")

    assert asyncio.run(pipeline.handle_change(ChangeEvent("a", None, "claude"))) is False
    assert service.dirty_sessions() == ["a"]

    content.failing.clear()
    stats = asyncio.run(pipeline.sweep())
    assert stats.processed == 1
    assert service.dirty_sessions() == []
    assert service.is_session_indexed("a", "claude")


def test_sweep_clears_ids_missing_from_catalog(service: SearchService) -> None:
    pipeline, _, _ = _pipeline(service, [], {})
    service.mark_dirty("ghost")
    stats = asyncio.run(pipeline.sweep())
    assert stats.skipped == 1
    assert service.dirty_sessions() == []


def test_sweep_reindexes_every_source_sharing_an_id(service: SearchService) -> None:
    sessions = [SessionInfo("dup", "claude"), SessionInfo("dup", "codex")]
    pipeline, _, _ = _pipeline(
        service,
        sessions,
        {("claude", "dup"): "claude words", ("codex", "dup"): "codex words"},
    )
    service.mark_dirty("dup")
    stats = asyncio.run(pipeline.sweep())
    assert stats.processed == 2
    assert service.is_session_indexed("dup", "claude")
    assert service.is_session_indexed("dup", "codex")


def test_sweep_keeps_shared_id_dirty_when_one_source_fails(service: SearchService) -> None:
    sessions = [SessionInfo("dup", "codex"), SessionInfo("dup", "claude")]
    pipeline, _, content = _pipeline(
        service,
        sessions,
        {("claude", "dup"): "claude words", ("codex", "dup"): "codex words"},
    )
    content.failing_sources.add("codex")

    async def run():
        await pipeline.refresh_expected()
        service.mark_dirty("dup")
        return await pipeline.sweep()

    stats = asyncio.run(run())
    assert stats.to_dict() == {"processed": 1, "skipped": 0, "failed": 1}
    assert service.dirty_sessions() == ["dup"]
    assert service.coverage().partial is True


def test_reindex_keeps_shared_id_dirty_when_one_source_fails(service: SearchService) -> None:
    sessions = [SessionInfo("dup", "codex"), SessionInfo("dup", "claude")]
    pipeline, _, content = _pipeline(service, sessions, {("claude", "dup"): "claude words"})
    content.failing_sources.add("codex")
    service.mark_dirty("dup")
    assert asyncio.run(pipeline.reindex("dup")) is False
    assert service.is_session_indexed("dup", "claude")
    assert service.dirty_sessions() == ["dup"]


def test_backfill_keeps_loop_responsive_while_search_holds_lock(service: SearchService) -> None:
    pipeline, _, _ = _pipeline(service, [SessionInfo("a", "claude")], {("claude", "a"): "alpha"})
    held = threading.Event()

    def slow_search() -> None:
        with service._lock:
            held.set()
            time.sleep(0.5)

    worker = threading.Thread(target=slow_search)
    worker.start()
    held.wait()

    async def run():
        gaps: list[float] = []

        async def ticker() -> None:
            last = time.perf_counter()
            for _ in range(40):
                await asyncio.sleep(0.01)
                now = time.perf_counter()
                gaps.append(now - last)
                last = now

        service.mark_dirty("a")
        stats, _ = await asyncio.gather(pipeline.backfill(), ticker())
        return stats, max(gaps)

    stats, worst_gap = asyncio.run(run())
    worker.join()
    assert stats.processed == 1
    assert worst_gap < 0.2


def test_deleted_event_removes_session(service: SearchService) -> None:
    sessions = [SessionInfo("a", "claude"), SessionInfo("a", "codex")]
    pipeline, _, _ = _pipeline(service, sessions, {("claude", "a"): "x y z", ("codex", "a"): "x y z"})

    async def run():
        await pipeline.refresh_expected()
        await pipeline.backfill()
        await pipeline.handle_change(ChangeEvent("a", None, "codex", kind="deleted"))

    asyncio.run(run())
    assert service.is_session_indexed("a", "claude")
    assert not service.is_session_indexed("a", "codex")
    assert service.expected_sessions() == [Identity("claude", "a")]
    assert service.dirty_sessions() == []


def test_unknown_session_is_left_dirty(service: SearchService) -> None:
    pipeline, catalog, _ = _pipeline(service, [], {})
    assert asyncio.run(pipeline.handle_change(ChangeEvent("new", None, "claude"))) is False
    assert service.dirty_sessions() == ["new"]
    assert catalog.calls >= 1


def test_bus_events_flow_through_started_pipeline(service: SearchService) -> None:
    sessions = [SessionInfo("a", "claude", "Alpha", "p", 1)]
    pipeline, catalog, content = _pipeline(service, sessions, {("claude", "a"): "before"})

    async def run():
        await pipeline.start()
        for _ in range(50):
            if service.is_session_indexed("a", "claude"):
                break
            await asyncio.sleep(0.01)
        content.texts[("claude", "a")] = "after"
        pipeline.bus.publish_session_change(ChangeEvent("a", None, "claude"))
        assert service.dirty_sessions() == ["a"]
        for _ in range(50):
            if not service.dirty_sessions():
                break
            await asyncio.sleep(0.01)
        await pipeline.stop()

    asyncio.run(run())
    assert len(service.search("after").results) == 1
    assert pipeline.bus.listener_count == 0


def test_metadata_cache_respects_ttl() -> None:
    now = [0.0]
    catalog = FakeCatalog([SessionInfo("a", "claude")])
    cache = SessionMetadataCache(catalog, ttl_s=5.0, clock=lambda: now[0])

    async def run():
        await cache.lookup("a")
        await cache.lookup("a")
        now[0] = 6.0
        await cache.lookup("a")
        cache.invalidate("a")
        return await cache.lookup("a", source="claude")

    found = asyncio.run(run())
    assert catalog.calls == 3
    assert found == [SessionInfo("a", "claude")]
