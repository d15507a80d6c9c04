"""Call pacing for one external lookup dependency.

A ``RateLimiter`` combines three limits:

- a minimum interval between consecutive calls,
- an optional rolling quota (at most N calls per window),
- an exponential backoff window opened by throttling signals.

``acquire`` suspends the caller cooperatively until all three allow the
next call. Waiters are served in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Async rate limiter for a single external service."""

    def __init__(
        self,
        *,
        name: str = "default",
        min_interval_seconds: float = 0.0,
        max_calls_per_window: Optional[int] = None,
        window_seconds: float = 60.0,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        if max_calls_per_window is not None and max_calls_per_window < 1:
            raise ValueError("max_calls_per_window must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.name = name
        self._min_interval = min_interval_seconds
        self._max_calls = max_calls_per_window
        self._window = window_seconds
        self._backoff_base = backoff_base_seconds
        self._backoff_max = max(backoff_max_seconds, backoff_base_seconds)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_call: Optional[float] = None
        self._calls: Deque[float] = deque()
        self._backoff_until = 0.0
        self._penalties = 0
        self._total_calls = 0
        self._total_waited = 0.0

    async def acquire(self, stop_event: Optional[asyncio.Event] = None) -> bool:
        """Wait until a call is allowed and record it.

        Args:
            stop_event: Optional event that interrupts the wait

        Returns:
            True when the call slot was granted, False when ``stop_event``
            was set before that happened
        """
        async with self._lock:
            while True:
                if stop_event is not None and stop_event.is_set():
                    return False
                now = self._clock()
                wait = self.time_until_available(now)
                if wait <= 0:
                    self._record_call(now)
                    return True
                self._total_waited += wait
                logger.debug(
                    "Rate limiter waiting",
                    extra={"rate_limiter": self.name, "wait_seconds": round(wait, 3)},
                )
                if await self._wait(wait, stop_event):
                    return False

    def time_until_available(self, now: Optional[float] = None) -> float:
        """Seconds until the next call would be allowed (0 when allowed now)."""
        now = self._clock() if now is None else now
        self._prune(now)
        ready_at = self._backoff_until
        if self._last_call is not None:
            ready_at = max(ready_at, self._last_call + self._min_interval)
        if self._max_calls is not None and len(self._calls) >= self._max_calls:
            ready_at = max(ready_at, self._calls[0] + self._window)
        return max(0.0, ready_at - now)

    def penalize(self, retry_after: Optional[float] = None) -> float:
        """Open a backoff window after a throttling signal.

        Consecutive penalties double the window up to the configured cap.
        A server-provided ``retry_after`` is honoured when it is longer.

        Returns:
            The backoff applied in seconds
        """
        self._penalties += 1
        delay = min(
            self._backoff_base * (2 ** (self._penalties - 1)),
            self._backoff_max,
        )
        if retry_after is not None:
            delay = max(delay, min(retry_after, self._backoff_max))
        self._backoff_until = max(self._backoff_until, self._clock() + delay)
        logger.warning(
            "Rate limiter backing off",
            extra={
                "rate_limiter": self.name,
                "backoff_seconds": delay,
                "consecutive_penalties": self._penalties,
            },
        )
        return delay

    def reset_backoff(self) -> None:
        """Forget consecutive penalties after a successful call."""
        self._penalties = 0

    @property
    def consecutive_penalties(self) -> int:
        return self._penalties

    def stats(self) -> Dict[str, float]:
        now = self._clock()
        self._prune(now)
        return {
            "total_calls": self._total_calls,
            "calls_in_window": len(self._calls),
            "total_waited_seconds": round(self._total_waited, 3),
            "backoff_remaining_seconds": round(max(0.0, self._backoff_until - now), 3),
        }

    def _record_call(self, now: float) -> None:
        self._last_call = now
        self._total_calls += 1
        if self._max_calls is not None:
            self._calls.append(now)

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self._window:
            self._calls.popleft()

    @staticmethod
    async def _wait(seconds: float, stop_event: Optional[asyncio.Event]) -> bool:
        if stop_event is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
