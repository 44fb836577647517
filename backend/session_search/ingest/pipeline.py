"""Ingest pipeline orchestration."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Sequence

from session_search.core.config import Settings
from session_search.core.logging import get_logger, log_fields
from session_search.core.metrics import REINDEX_TOTAL
from session_search.ingest.collaborators import ContentAccessor, SessionCatalog
from session_search.ingest.events import ChangeBus
from session_search.ingest.types import ChangeEvent, IngestStats, SessionInfo
from session_search.retrieval.search import SearchService
from session_search.retrieval.types import Identity

logger = get_logger(__name__)

BACKFILL_PROGRESS_EVERY = 50


class SessionMetadataCache:
    """Short-lived copy of the catalog listing, indexed by session id."""

    def __init__(
        self,
        catalog: SessionCatalog,
        ttl_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.catalog = catalog
        self.ttl_s = ttl_s
        self._clock = clock
        self._sessions: list[SessionInfo] = []
        self._by_id: dict[str, list[SessionInfo]] = {}
        self._loaded_at: float | None = None

    def _fresh(self) -> bool:
        return self._loaded_at is not None and self._clock() - self._loaded_at < self.ttl_s

    def prime(self, sessions: Sequence[SessionInfo]) -> None:
        self._sessions = list(sessions)
        by_id: dict[str, list[SessionInfo]] = {}
        for session in self._sessions:
            by_id.setdefault(session.id, []).append(session)
        self._by_id = by_id
        self._loaded_at = self._clock()

    async def all(self, refresh: bool = False) -> list[SessionInfo]:
        if refresh or not self._fresh():
            self.prime(await self.catalog.list_expected_sessions())
        return list(self._sessions)

    async def lookup(self, session_id: str, source: str | None = None, refresh: bool = False) -> list[SessionInfo]:
        """Catalog entries carrying ``session_id``, optionally restricted to ``source``."""
        await self.all(refresh=refresh)
        matches = self._by_id.get(session_id, [])
        if source is not None:
            matches = [session for session in matches if session.source == source]
        return list(matches)

    def invalidate(self, session_id: str | None = None) -> None:
        if session_id is not None:
            self._by_id.pop(session_id, None)
            self._sessions = [session for session in self._sessions if session.id != session_id]
        self._loaded_at = None


class IngestPipeline:
    """Keep the search indexes in step with the catalog and transcript changes."""

    def __init__(
        self,
        service: SearchService,
        catalog: SessionCatalog,
        content: ContentAccessor,
        bus: ChangeBus | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.service = service
        self.catalog = catalog
        self.content = content
        self.bus = bus or ChangeBus()
        self.settings = settings or service.settings
        self.cache = SessionMetadataCache(catalog, ttl_s=self.settings.metadata_cache_ttl_s)
        self._locks: dict[Identity, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()
        self._sweep_task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # Event handling -----------------------------------------------------

    async def handle_change(self, event: ChangeEvent) -> bool:
        """Mark the session dirty and reindex (or remove) it right away."""
        self.service.mark_dirty(event.session_id)
        if event.kind == "deleted":
            await self.remove_session(event.session_id, event.source)
            return True
        return await self.reindex(event.session_id, event.source, trigger="change")

    async def reindex(self, session_id: str, source: str | None = None, trigger: str = "manual") -> bool:
        """Index every catalog session named ``session_id`` (restricted to ``source`` if given).

        Returns False when the session is unknown to the catalog or any write
        failed; in both cases the dirty mark is left for the sweep.
        """
        sessions = await self.cache.lookup(session_id, source)
        if not sessions:
            # a new transcript can show up before the cached listing does
            sessions = await self.cache.lookup(session_id, source, refresh=True)
        if not sessions:
            logger.debug(
                "Session not in catalog yet; leaving it dirty",
                extra=log_fields(session_id=session_id, source=source),
            )
            REINDEX_TOTAL.labels(trigger=trigger, outcome="unknown").inc()
            return False

        ok = True
        for session in sessions:
            ok = await self._index_one(session, trigger) and ok
        if not ok:
            # a sibling source sharing the id may have cleared the mark
            self.service.mark_dirty(session_id)
        return ok

    async def _index_one(self, session: SessionInfo, trigger: str) -> bool:
        identity = Identity(session.source, session.id)
        lock = self._locks.setdefault(identity, asyncio.Lock())
        async with lock:
            try:
                text = await self.content.get_full_content(session.id, session.source)
            except Exception:
                logger.exception(
                    "Failed to read transcript",
                    extra=log_fields(session_id=session.id, source=session.source),
                )
                self.service.mark_dirty(session.id)
                REINDEX_TOTAL.labels(trigger=trigger, outcome="error").inc()
                return False
            ok = await asyncio.to_thread(
                self.service.index_session,
                session.id,
                session.source,
                session.display,
                session.project,
                text,
                session.timestamp,
            )
        REINDEX_TOTAL.labels(trigger=trigger, outcome="ok" if ok else "error").inc()
        return ok

    async def remove_session(self, session_id: str, source: str | None = None) -> list[Identity]:
        removed = await asyncio.to_thread(self.service.remove_indexed_session, session_id, source)
        self.cache.invalidate(session_id)
        for identity in removed:
            self._locks.pop(identity, None)
        logger.info(
            "Removed session from search index",
            extra=log_fields(session_id=session_id, source=source, removed=len(removed)),
        )
        return removed

    # Batch jobs ---------------------------------------------------------

    async def sweep(self) -> IngestStats:
        """Retry every dirty session id against a fresh catalog listing."""
        stats = IngestStats()
        dirty = self.service.dirty_sessions()
        if not dirty:
            return stats
        await self.cache.all(refresh=True)
        for session_id in dirty:
            sessions = await self.cache.lookup(session_id)
            if not sessions:
                # gone from the catalog; nothing left to index
                self.service.clear_dirty(session_id)
                stats.skipped += 1
                continue
            if len(sessions) > 1:
                logger.debug(
                    "Dirty id shared by %s sources; reindexing all of them",
                    len(sessions),
                    extra=log_fields(session_id=session_id),
                )
            failed = False
            for session in sessions:
                try:
                    ok = await self._index_one(session, trigger="sweep")
                except Exception:
                    logger.exception("Sweep failed for session", extra=log_fields(session_id=session_id))
                    ok = False
                if ok:
                    stats.processed += 1
                else:
                    stats.failed += 1
                    failed = True
            if failed:
                self.service.mark_dirty(session_id)
        logger.info("Dirty sweep finished", extra=log_fields(**stats.to_dict()))
        return stats

    async def refresh_expected(self) -> int:
        sessions = await self.cache.all(refresh=True)
        await asyncio.to_thread(self.service.set_expected, sessions)
        return len(sessions)

    async def backfill(self) -> IngestStats:
        """Index every expected session that is not in the index yet."""
        stats = IngestStats()
        sessions = await self.cache.all()
        total = len(sessions)
        for session in sessions:
            if await asyncio.to_thread(self.service.is_session_indexed, session.id, session.source):
                stats.skipped += 1
                continue
            try:
                ok = await self._index_one(session, trigger="backfill")
            except Exception:
                logger.exception("Backfill failed for session", extra=log_fields(session_id=session.id))
                ok = False
            if not ok:
                stats.failed += 1
                continue
            stats.processed += 1
            if stats.processed % BACKFILL_PROGRESS_EVERY == 0:
                logger.info("Indexed %s/%s sessions", stats.processed, total)
        if stats.processed:
            logger.info("Backfill indexed %s new sessions", stats.processed, extra=log_fields(**stats.to_dict()))
        return stats

    # Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        self.bus.on_session_change(self._on_session_change)
        self.bus.on_history_change(self._on_history_change)
        self._spawn(self._initial_load())
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        self.bus.off_session_change(self._on_session_change)
        self.bus.off_history_change(self._on_history_change)
        tasks = list(self._tasks)
        if self._sweep_task is not None:
            tasks.append(self._sweep_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._sweep_task = None
        self._loop = None

    async def _initial_load(self) -> None:
        try:
            await self.refresh_expected()
            await self.backfill()
        except Exception:
            logger.exception("Initial catalog load failed")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.reindex_interval_s)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Dirty sweep failed")

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh_expected()
        except Exception:
            logger.exception("Catalog refresh failed")

    async def _handle_quietly(self, event: ChangeEvent) -> None:
        try:
            await self.handle_change(event)
        except Exception:
            logger.exception("Change handling failed", extra=log_fields(session_id=event.session_id))

    def _on_session_change(self, event: ChangeEvent) -> None:
        # the dirty mark must not wait for the loop
        self.service.mark_dirty(event.session_id)
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._spawn_change, event)

    def _on_history_change(self) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._spawn_refresh)

    def _spawn_change(self, event: ChangeEvent) -> None:
        self._spawn(self._handle_quietly(event))

    def _spawn_refresh(self) -> None:
        self.cache.invalidate()
        self._spawn(self._refresh_quietly())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


__all__ = ["IngestPipeline", "SessionMetadataCache"]
