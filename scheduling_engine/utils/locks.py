"""Per-key locks serializing check-then-write on one ledger tuple."""

from __future__ import annotations

from contextlib import contextmanager
from threading import Lock, RLock
from typing import Hashable, Iterator


class KeyedLockRegistry:
    """Hands out one lock per (channel_id, date, slot) key."""

    def __init__(self) -> None:
        self._guard = RLock()
        self._locks: dict[Hashable, Lock] = {}

    def lock_for(self, key: Hashable) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield
