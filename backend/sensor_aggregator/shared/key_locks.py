"""
Per-key serialization for aggregate updates within one process.

Only serializes writers that share this process. Cross-process safety comes
from the VERSION guard on the store.
"""

from collections import defaultdict
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, Tuple


class KeyLockRegistry:
    """Hands out one lock per (sensor_id, hour_bucket), dropping it when idle."""

    def __init__(self):
        self._guard = Lock()
        self._locks: Dict[Tuple[str, str], Lock] = {}
        self._waiters: Dict[Tuple[str, str], int] = defaultdict(int)

    @contextmanager
    def hold(self, sensor_id: str, hour_bucket: str) -> Iterator[None]:
        key = (sensor_id, hour_bucket)
        with self._guard:
            lock = self._locks.setdefault(key, Lock())
            self._waiters[key] += 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
