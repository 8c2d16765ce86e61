"""
Key-Value Storage Interface

The engine persists sessions and ledger entries through this minimal
interface only. Any backend that can get, set (with optional TTL), delete
and scan by key prefix is sufficient: an in-memory dict, Redis, a SQL table.

Values are JSON-compatible structures (dicts, lists, strings, numbers).
"""

import copy
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, Optional, Tuple


class KeyValueStore(ABC):
    """
    Abstract key-value store.

    Implementations must make each single call atomic with respect to other
    calls; multi-key atomicity is provided by the engine's own locks.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the value for key, or None if absent or expired"""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value under key, optionally expiring after ttl seconds"""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns True if it existed"""
        pass

    @abstractmethod
    def scan_prefix(self, prefix: str) -> Iterator[Tuple[str, Any]]:
        """Yield (key, value) pairs whose key starts with prefix"""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """
    Thread-safe in-memory store.

    Values are deep-copied on the way in and out so callers can never mutate
    stored state without going through set(). Expired keys are evicted lazily
    on access and in a periodic cleanup pass.
    """

    def __init__(self, clock: Callable[[], float] = time.time, cleanup_interval: float = 300):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.RLock()
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    def _is_expired(self, expires_at: Optional[float], now: float) -> bool:
        return expires_at is not None and expires_at <= now

    def _periodic_cleanup(self, now: float) -> None:
        """Periodically drop expired entries to prevent memory growth"""
        if now - self._last_cleanup > self._cleanup_interval:
            expired = [k for k, (_, exp) in self._data.items() if self._is_expired(exp, now)]
            for key in expired:
                del self._data[key]
            self._last_cleanup = now

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            now = self._clock()
            self._periodic_cleanup(now)
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._is_expired(expires_at, now):
                del self._data[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            now = self._clock()
            expires_at = now + ttl if ttl is not None else None
            self._data[key] = (copy.deepcopy(value), expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def scan_prefix(self, prefix: str) -> Iterator[Tuple[str, Any]]:
        # Snapshot under the lock so callers may write while iterating
        with self._lock:
            now = self._clock()
            snapshot = [
                (key, copy.deepcopy(value))
                for key, (value, expires_at) in self._data.items()
                if key.startswith(prefix) and not self._is_expired(expires_at, now)
            ]
        return iter(sorted(snapshot, key=lambda item: item[0]))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
