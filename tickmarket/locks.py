"""
locks.py - Per-key locks and the single-flight tick guard

LockManager hands out one re-entrant lock per key (asset symbol or wallet
id). hold() acquires several keys in sorted order, so two callers locking
overlapping key sets cannot deadlock.
"""

from __future__ import annotations
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class LockManager:
    """Registry of named re-entrant locks."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold the locks for all keys (duplicates ignored) for the block."""
        ordered = [self.lock_for(k) for k in sorted(set(keys))]
        acquired = []
        try:
            for lock in ordered:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def discard(self, key: str) -> None:
        """Forget the lock of a key that no longer exists (delisted asset)."""
        with self._guard:
            self._locks.pop(key, None)


class TickAlreadyRunning(RuntimeError):
    """Raised when a tick is requested while another tick is in progress."""


class SingleFlight:
    """Non-blocking guard allowing at most one holder at a time."""

    def __init__(self, name: str = "tick"):
        self.name = name
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def enter(self) -> Iterator[None]:
        """
        Run the block as the only holder.

        Raises:
            TickAlreadyRunning: If another holder is inside
        """
        if not self._lock.acquire(blocking=False):
            raise TickAlreadyRunning(f"{self.name} is already running")
        try:
            yield
        finally:
            self._lock.release()
