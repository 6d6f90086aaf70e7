"""Tests for the per-key lock table."""

import threading
import time

import pytest

from common.keyed_lock import KeyedLock


class TestKeyedLock:
    """Mutual exclusion per key."""

    def test_same_key_is_serialized(self):
        locks = KeyedLock()
        active = []
        overlaps = []

        def worker():
            with locks.hold("repo"):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        locks.acquire("a")
        acquired = threading.Event()

        def worker():
            with locks.hold("b"):
                acquired.set()

        t = threading.Thread(target=worker)
        t.start()
        assert acquired.wait(timeout=2)
        t.join()
        locks.release("a")

    def test_entries_are_dropped_when_unused(self):
        locks = KeyedLock()
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_release_of_unlocked_key_raises(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            locks.release("missing")

    def test_lock_released_on_exception(self):
        locks = KeyedLock()
        with pytest.raises(ValueError):
            with locks.hold("a"):
                raise ValueError("boom")
        assert len(locks) == 0
