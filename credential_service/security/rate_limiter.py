"""In-memory sliding window rate limiter for credential intents."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Deque, DefaultDict


class SlidingWindowRateLimiter:
    """Thread-safe sliding window limiter keyed by ``"<intent>:<email>"`` strings."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._events: DefaultDict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Record an attempt and return ``True`` when it is within the limit."""
        now = self._clock()
        with self._lock:
            attempts = self._events[key]
            while attempts and now - attempts[0] >= self._window:
                attempts.popleft()
            if len(attempts) >= self._max_requests:
                return False
            attempts.append(now)
            return True

    def reset(self, key: str) -> None:
        """Forget all recorded attempts for ``key``."""
        with self._lock:
            self._events.pop(key, None)
