"""Filesystem watcher that publishes transcript and catalog changes."""

from __future__ import annotations

import asyncio
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from session_search.core.logging import get_logger
from session_search.ingest.events import ChangeBus
from session_search.ingest.types import ChangeEvent, ChangeKind

logger = get_logger(__name__)

SESSION_DEBOUNCE_S = 0.020
HISTORY_DEBOUNCE_S = 0.100
HISTORY_FILENAMES = ("history.jsonl", "history.json")
TRANSCRIPT_SUFFIX = ".jsonl"

# codex rollout files end in the session uuid: rollout-2025-01-01T10-00-00-<uuid>.jsonl
_CODEX_ID_RE = re.compile(r"([0-9a-f]{4,}-[0-9a-f-]+)$")


def is_history_file(path: Path) -> bool:
    return path.name in HISTORY_FILENAMES


def detect_source(path: Path, roots: Mapping[str, Path]) -> str | None:
    """Source whose root contains ``path``; the deepest root wins."""
    best: tuple[int, str] | None = None
    for source, root in roots.items():
        try:
            path.relative_to(root)
        except ValueError:
            continue
        depth = len(root.parts)
        if best is None or depth > best[0]:
            best = (depth, source)
    return best[1] if best else None


def session_id_from_path(path: Path, source: str) -> str:
    stem = path.name[: -len(TRANSCRIPT_SUFFIX)] if path.name.endswith(TRANSCRIPT_SUFFIX) else path.stem
    if source == "codex":
        match = _CODEX_ID_RE.search(stem)
        if match:
            return match.group(1)
    return stem


@dataclass
class _PendingChange:
    handle: asyncio.TimerHandle
    kind: ChangeKind


class TranscriptEventHandler(FileSystemEventHandler):
    """Forward raw watchdog events from observer threads to the watcher."""

    def __init__(self, watcher: "SessionWatcher") -> None:
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        if not event.is_directory:
            self.watcher.notify(Path(event.src_path), "changed")

    def on_modified(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        if not event.is_directory:
            self.watcher.notify(Path(event.src_path), "changed")

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        if not event.is_directory:
            self.watcher.notify(Path(event.src_path), "deleted")
            self.watcher.notify(Path(event.dest_path), "changed")

    def on_deleted(self, event: FileSystemEvent) -> None:  # pragma: no cover - requires filesystem
        if not event.is_directory:
            self.watcher.notify(Path(event.src_path), "deleted")


class SessionWatcher:
    """Watch each source root and publish debounced events on the change bus.

    Observer threads hand paths to the asyncio loop with
    ``call_soon_threadsafe``; debouncing and publishing happen on the loop.
    """

    def __init__(
        self,
        roots: Mapping[str, Path],
        bus: ChangeBus,
        polling: bool = False,
        session_debounce_s: float = SESSION_DEBOUNCE_S,
        history_debounce_s: float = HISTORY_DEBOUNCE_S,
    ) -> None:
        self.roots = {source: Path(root).expanduser() for source, root in roots.items()}
        self.bus = bus
        self.polling = polling
        self.session_debounce_s = session_debounce_s
        self.history_debounce_s = history_debounce_s
        self._observer: BaseObserver | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()
        self._pending: Dict[Path, _PendingChange] = {}

    @property
    def started(self) -> bool:
        return self._observer is not None

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            if self._observer is not None:
                return
            observer: BaseObserver = PollingObserver(timeout=0.1) if self.polling else Observer()
            handler = TranscriptEventHandler(self)
            scheduled = 0
            for source, root in self.roots.items():
                if not root.is_dir():
                    logger.warning("Watch root for %s does not exist: %s", source, root)
                    continue
                observer.schedule(handler, str(root), recursive=True)
                scheduled += 1
                # history files sit next to the transcript directory
                if root.parent.is_dir():
                    observer.schedule(handler, str(root.parent), recursive=False)
            self._loop = loop
            observer.start()
            self._observer = observer
            logger.info("Watching %s session roots", scheduled)

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
        for pending in self._pending.values():
            pending.handle.cancel()
        self._pending.clear()
        self._loop = None

    def notify(self, path: Path, kind: ChangeKind) -> None:
        """Thread-safe entry point for observer threads."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.schedule, path, kind)

    def schedule(self, path: Path, kind: ChangeKind = "changed") -> None:
        """Debounce ``path`` on the running loop; a newer event restarts the timer."""
        if not (is_history_file(path) or path.name.endswith(TRANSCRIPT_SUFFIX)):
            return
        loop = asyncio.get_running_loop() if self._loop is None else self._loop
        existing = self._pending.pop(path, None)
        if existing is not None:
            existing.handle.cancel()
        delay = self.history_debounce_s if is_history_file(path) else self.session_debounce_s
        handle = loop.call_later(delay, self._emit, path)
        self._pending[path] = _PendingChange(handle=handle, kind=kind)

    def _emit(self, path: Path) -> None:
        pending = self._pending.pop(path, None)
        kind: ChangeKind = pending.kind if pending is not None else "changed"
        if is_history_file(path):
            self.bus.publish_history_change()
            return
        source = detect_source(path, self.roots)
        if source is None:
            logger.debug("Ignoring transcript outside watch roots: %s", path)
            return
        event = ChangeEvent(
            session_id=session_id_from_path(path, source),
            file_path=path,
            source=source,
            kind=kind,
        )
        self.bus.publish_session_change(event)


__all__ = [
    "SessionWatcher",
    "TranscriptEventHandler",
    "detect_source",
    "session_id_from_path",
    "is_history_file",
]
