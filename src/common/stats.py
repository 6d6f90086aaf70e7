"""Thread-safe event counters exposed on the health endpoint."""

from __future__ import annotations

import threading
from collections import Counter
from typing import Dict


class GateStats:
    """Counts gate outcomes such as passes, rejections and check bypasses."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter = Counter()

    def incr(self, event: str, amount: int = 1) -> None:
        """Increment the counter for ``event``."""
        with self._lock:
            self._counts[event] += amount

    def get(self, event: str) -> int:
        """Current value of the counter for ``event``."""
        with self._lock:
            return self._counts[event]

    def snapshot(self) -> Dict[str, int]:
        """Copy of all counters."""
        with self._lock:
            return dict(self._counts)
