"""Sliding-window rate limiting per service."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from time import monotonic

WINDOW_SECONDS = 60.0


class SlidingWindowRateLimiter:
    """Admits a call when fewer than `limit` admissions fall in the trailing window.

    Only admissions are recorded, so rejected calls do not extend the window.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}

    def try_acquire(self, key: str) -> bool:
        now = self._clock()
        window = self._windows.setdefault(key, deque())
        self._prune(window, now)
        if len(window) >= self.limit:
            return False
        window.append(now)
        return True

    def usage(self, key: str) -> int:
        window = self._windows.get(key)
        if window is None:
            return 0
        self._prune(window, self._clock())
        return len(window)

    def reset(self) -> None:
        self._windows.clear()

    def _prune(self, window: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
