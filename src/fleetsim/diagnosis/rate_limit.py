"""Sliding-window rate limiter for enrichment calls."""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from collections.abc import Callable

from fleetsim.exceptions import RateLimitExceeded


class SlidingWindowRateLimiter:
    """Allow at most ``max_calls`` acquisitions per ``window_seconds``.

    A full window fails fast with :class:`RateLimitExceeded` instead of
    queuing. A slot is claimed at acquisition time, under a lock, so
    concurrent enrichment calls cannot overshoot the budget.
    """

    def __init__(
        self,
        max_calls: int = 50,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._max_calls = max_calls
        self._window = window_seconds
        self._clock = clock
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_calls(self) -> int:
        return self._max_calls

    @property
    def window_seconds(self) -> float:
        return self._window

    def _prune(self, now: float) -> None:
        cutoff = now - self._window
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()

    def in_window(self) -> int:
        """Number of calls currently counted against the budget."""
        self._prune(self._clock())
        return len(self._calls)

    def wait_time(self) -> float:
        """Seconds until a slot frees up (``0`` when one is available)."""
        now = self._clock()
        self._prune(now)
        if len(self._calls) < self._max_calls:
            return 0.0
        return max(0.0, self._calls[0] + self._window - now)

    async def acquire(self) -> None:
        """Claim a slot or raise :class:`RateLimitExceeded`."""
        async with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._calls) >= self._max_calls:
                retry_after = max(0.0, self._calls[0] + self._window - now)
                raise RateLimitExceeded(
                    f"Rate limit exceeded ({self._max_calls} calls per {self._window:g}s). "
                    f"Wait {math.ceil(retry_after)}s",
                    retry_after=retry_after,
                )
            self._calls.append(now)
