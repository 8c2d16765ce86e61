"""
Per-key critical sections

KeyedLock hands out one mutex per key (session id, track id) so work on
different keys runs fully in parallel while work on the same key is
serialized. Entries are reference counted and dropped once nobody holds or
waits on them. Every acquire is bounded by a timeout.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from playback.errors import SessionBusyError


class _LockEntry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLock:
    """Registry of per-key locks with bounded acquisition"""

    def __init__(self, name: str, timeout: float = 5.0):
        self.name = name
        self.timeout = timeout
        self._guard = threading.Lock()
        self._entries: Dict[str, _LockEntry] = {}

    def _checkout(self, key: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _LockEntry()
                self._entries[key] = entry
            entry.refs += 1
            return entry

    def _checkin(self, key: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Enter the critical section for key.

        Raises:
            SessionBusyError: If the lock is not acquired within the timeout
        """
        wait = self.timeout if timeout is None else timeout
        entry = self._checkout(key)
        acquired = False
        try:
            acquired = entry.lock.acquire(timeout=wait)
            if not acquired:
                raise SessionBusyError(f"{self.name}:{key}", wait)
            yield
        finally:
            if acquired:
                entry.lock.release()
            self._checkin(key, entry)

    def active_keys(self) -> List[str]:
        """Keys currently held or waited on"""
        with self._guard:
            return list(self._entries)
