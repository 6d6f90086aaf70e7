"""Lock table keyed by name.

Serializes work per key (e.g. per git repository) while letting different
keys proceed concurrently.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLock:
    """Mutual exclusion per key.

    Locks are created on first use and dropped once nobody holds or waits
    for them, so the table does not grow with every key ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def acquire(self, key: str) -> None:
        """Block until the lock for ``key`` is held by the caller."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()

    def release(self, key: str) -> None:
        """Release the lock for ``key``.

        Raises:
            RuntimeError: If ``key`` is not currently locked.
        """
        with self._guard:
            lock = self._locks.get(key)
            if lock is None or not lock.locked():
                raise RuntimeError(f"release of unlocked key: {key}")
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]
            lock.release()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        self.acquire(key)
        try:
            yield
        finally:
            self.release(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
