"""Cooperative cancellation shared by the orchestrator, retries and tools."""

from __future__ import annotations

import threading
from typing import Callable, List, Optional


class CancellationToken:
    """A settable flag that long-running work polls or waits on.

    Listeners registered with :meth:`add_listener` run once, on the thread
    that calls :meth:`cancel`.  A listener added after cancellation runs
    immediately.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], None]] = []
        self.reason: str = ""
        if parent is not None:
            parent.add_listener(lambda: self.cancel(parent.reason))

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            listeners = list(self._listeners)
            self._listeners.clear()
        for listener in listeners:
            listener()

    def add_listener(self, listener: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._listeners.append(listener)
                return
        listener()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to *timeout* seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)
