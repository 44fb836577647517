"""In-process publish/subscribe channels for transcript and catalog changes."""

from __future__ import annotations

import threading
from typing import Callable

from session_search.core.logging import get_logger
from session_search.ingest.types import ChangeEvent

logger = get_logger(__name__)

SessionListener = Callable[[ChangeEvent], None]
HistoryListener = Callable[[], None]


class ChangeBus:
    """Two listener channels: per-session changes and catalog (history) changes.

    Publishing iterates a snapshot of the listeners and re-checks membership
    before each delivery, so a listener removed while an event is in flight
    receives nothing further. A failing listener is logged and does not stop
    delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session_listeners: list[SessionListener] = []
        self._history_listeners: list[HistoryListener] = []

    def on_session_change(self, listener: SessionListener) -> None:
        with self._lock:
            if listener not in self._session_listeners:
                self._session_listeners.append(listener)

    def off_session_change(self, listener: SessionListener) -> None:
        with self._lock:
            if listener in self._session_listeners:
                self._session_listeners.remove(listener)

    def on_history_change(self, listener: HistoryListener) -> None:
        with self._lock:
            if listener not in self._history_listeners:
                self._history_listeners.append(listener)

    def off_history_change(self, listener: HistoryListener) -> None:
        with self._lock:
            if listener in self._history_listeners:
                self._history_listeners.remove(listener)

    def publish_session_change(self, event: ChangeEvent) -> int:
        """Deliver ``event``; returns the number of listeners that received it."""
        with self._lock:
            snapshot = list(self._session_listeners)
        delivered = 0
        for listener in snapshot:
            with self._lock:
                if listener not in self._session_listeners:
                    continue
            try:
                listener(event)
            except Exception:
                logger.exception("Session change listener failed for %s", event.session_id)
                continue
            delivered += 1
        return delivered

    def publish_history_change(self) -> int:
        with self._lock:
            snapshot = list(self._history_listeners)
        delivered = 0
        for listener in snapshot:
            with self._lock:
                if listener not in self._history_listeners:
                    continue
            try:
                listener()
            except Exception:
                logger.exception("History change listener failed")
                continue
            delivered += 1
        return delivered

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._session_listeners) + len(self._history_listeners)


__all__ = ["ChangeBus", "SessionListener", "HistoryListener"]
