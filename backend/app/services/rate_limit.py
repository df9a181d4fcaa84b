from __future__ import annotations

import math
import threading
import time
from typing import Callable, Protocol


class RateLimitGate(Protocol):
    def allow(self, key: str) -> bool: ...

    def retry_after(self, key: str) -> int: ...


class FixedWindowRateLimiter:
    """max_requests por clave en ventanas fijas de window_seconds."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def _current(self, key: str, now: float) -> tuple[float, int]:
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window_seconds:
            return now, 0
        return start, count

    def allow(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            start, count = self._current(key, now)
            if count >= self.max_requests:
                self._windows[key] = (start, count)
                return False
            self._windows[key] = (start, count + 1)
            return True

    def retry_after(self, key: str) -> int:
        with self._lock:
            now = self._clock()
            start, count = self._current(key, now)
            if count < self.max_requests:
                return 0
            return max(1, math.ceil(start + self.window_seconds - now))
