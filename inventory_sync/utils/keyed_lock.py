"""
Keyed lock — per-key mutual exclusion for concurrent batch workers.

Two batches touching the same SKU must not interleave their
fingerprint-check and write. Locks for a batch are taken in sorted key
order so overlapping batches cannot deadlock.
Version: 1.0.0
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[None]:
        """Hold the locks of every key for the duration of the block."""
        acquired: List[threading.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
