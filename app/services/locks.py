"""Per-key mutual exclusion for read-modify-write operations."""
import threading
from contextlib import contextmanager
from typing import Dict


class KeyedLock:
    """Hands out one lock per key (user id, game id, ...).

    Requests touching different keys run in parallel; requests on the same
    key are serialized.  Entries are reference-counted and dropped once no
    thread holds or waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
