"""Process-local fixed-window rate limiter.

State lives in this process only; each worker enforces its own window.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> int | None:
        """Count a request for ``key``.

        Returns:
            None when the request is allowed, otherwise the number of seconds
            (at least 1) until the window resets.
        """
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                self._prune(now)
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return None

            window.count += 1
            if window.count <= self.max_requests:
                return None
            return max(1, math.ceil(window.reset_at - now))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if window.reset_at <= now]
        for key in expired:
            del self._windows[key]
