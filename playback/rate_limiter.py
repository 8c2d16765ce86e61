"""
Sliding Window Rate Limiting

Counts calls per key (user id) over a sliding time window. Used to cap how
often a user may start playback, which stops scripted play farming.

For multi-instance deployments, implement SlidingWindowCounter on top of a
shared store (e.g. Redis sorted sets).
"""

import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Tuple


class SlidingWindowCounter(ABC):
    """Abstract sliding-window counter keyed by an identifier"""

    limit: int
    window_seconds: float

    @abstractmethod
    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Record an attempt for key if it fits in the window.

        Returns:
            (is_allowed, retry_after_seconds); rejected attempts are not recorded
        """
        pass

    @abstractmethod
    def remaining(self, key: str) -> int:
        """Attempts still available in the current window"""
        pass


@dataclass
class WindowState:
    """Timestamps of accepted attempts for a single key"""
    hits: Deque[float] = field(default_factory=deque)

    def cleanup(self, now: float, window: float) -> None:
        """Remove entries that slid out of the window"""
        cutoff = now - window
        while self.hits and self.hits[0] <= cutoff:
            self.hits.popleft()


class InMemorySlidingWindowCounter(SlidingWindowCounter):
    """
    In-memory sliding window counter.

    Thread-safe; idle keys are pruned periodically to bound memory.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = 300,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._state: Dict[str, WindowState] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()
        self._cleanup_interval = cleanup_interval

    def _periodic_cleanup(self, now: float) -> None:
        if now - self._last_cleanup > self._cleanup_interval:
            keys_to_remove = []
            for key, state in self._state.items():
                state.cleanup(now, self.window_seconds)
                if not state.hits:
                    keys_to_remove.append(key)
            for key in keys_to_remove:
                del self._state[key]
            self._last_cleanup = now

    def hit(self, key: str) -> Tuple[bool, int]:
        with self._lock:
            now = self._clock()
            self._periodic_cleanup(now)
            state = self._state.setdefault(key, WindowState())
            state.cleanup(now, self.window_seconds)

            if len(state.hits) >= self.limit:
                retry_after = max(1, math.ceil(state.hits[0] + self.window_seconds - now))
                return False, retry_after

            state.hits.append(now)
            return True, 0

    def remaining(self, key: str) -> int:
        with self._lock:
            state = self._state.get(key)
            if state is None:
                return self.limit
            state.cleanup(self._clock(), self.window_seconds)
            return max(0, self.limit - len(state.hits))

    def reset(self, key: str) -> None:
        with self._lock:
            self._state.pop(key, None)
