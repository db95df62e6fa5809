from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .cache import Clock, utc_now

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """Counts requests in fixed windows; the counter resets once ``window`` has elapsed."""

    def __init__(
        self,
        *,
        max_requests: int = 25,
        window: timedelta = timedelta(minutes=1),
        clock: Clock = utc_now,
    ) -> None:
        if max_requests <= 0:
            msg = "max_requests must be > 0"
            raise ValueError(msg)
        if window <= timedelta(0):
            msg = "window must be positive"
            raise ValueError(msg)

        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._count = 0
        self._window_start: datetime = clock()

    @property
    def remaining(self) -> int:
        self._roll_window()
        return max(0, self.max_requests - self._count)

    def try_acquire(self) -> bool:
        self._roll_window()
        if self._count >= self.max_requests:
            return False
        self._count += 1
        return True

    def reset(self) -> None:
        self._count = 0
        self._window_start = self._clock()

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start > self.window:
            logger.debug("Rate limit window reset")
            self._count = 0
            self._window_start = now


class RateLimitState:
    """Sticky flag set once an upstream reports throttling; suppresses further fetching."""

    def __init__(self) -> None:
        self.limited = False
        self.reason: str | None = None

    def trip(self, reason: str) -> None:
        if not self.limited:
            logger.warning("Rate limit detected: %s", reason)
        self.limited = True
        self.reason = reason

    def clear(self) -> None:
        self.limited = False
        self.reason = None


__all__ = ["FixedWindowRateLimiter", "RateLimitState"]
