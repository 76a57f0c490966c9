"""
Probe Rate Limiter - admission decisions for the dispatcher.

A probe may start only when all three hold:
1. the minimum delay since the last start has elapsed
2. fewer than ``max_per_minute`` probes started in the trailing 60 seconds
3. fewer than ``max_concurrent`` probes are in flight

The clock is injectable so the rolling window can be driven by tests.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from xssprobe.utils.logger import get_logger

logger = get_logger("core.rate_limiter")

WINDOW_SECONDS = 60.0


class RateLimiter:

    def __init__(
        self,
        min_delay: float = 1.0,
        max_per_minute: int = 60,
        max_concurrent: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_delay = min_delay
        self.max_per_minute = max_per_minute
        self.max_concurrent = max_concurrent
        self._clock = clock
        self._starts: Deque[float] = deque()
        self._last_start: Optional[float] = None
        self.in_flight = 0

    def _prune(self, now: float) -> None:
        cutoff = now - WINDOW_SECONDS
        while self._starts and self._starts[0] <= cutoff:
            self._starts.popleft()

    def blocked_reason(self, now: Optional[float] = None) -> Optional[str]:
        """Why a probe cannot start right now, or None when it can."""
        now = self._clock() if now is None else now
        self._prune(now)
        if self._last_start is not None and now - self._last_start < self.min_delay:
            return "min_delay"
        if len(self._starts) >= self.max_per_minute:
            return "per_minute"
        if self.in_flight >= self.max_concurrent:
            return "concurrency"
        return None

    def try_acquire(self) -> bool:
        """Record a probe start if admissible."""
        now = self._clock()
        reason = self.blocked_reason(now)
        if reason is not None:
            logger.debug(f"Probe held back: {reason}")
            return False
        self._starts.append(now)
        self._last_start = now
        self.in_flight += 1
        return True

    def release(self) -> None:
        """Mark an in-flight probe as finished."""
        if self.in_flight > 0:
            self.in_flight -= 1

    def get_stats(self) -> Dict[str, float]:
        self._prune(self._clock())
        return {
            "in_flight": self.in_flight,
            "started_last_minute": len(self._starts),
            "max_per_minute": self.max_per_minute,
            "max_concurrent": self.max_concurrent,
        }
