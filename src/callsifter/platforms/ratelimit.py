"""Per-adapter request pacing.

Each adapter owns one RateLimiter. It spaces requests to the vendor's
requests-per-second ceiling and, for vendors with a daily allowance,
refuses to go over it.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable

from callsifter.errors import TransientError

log = logging.getLogger(__name__)

DAY_SECONDS = 86_400


class RateLimiter:
    def __init__(
        self,
        min_interval: float = 0.0,
        daily_quota: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self.daily_quota = daily_quota
        self._clock = clock
        self._sleep = sleep
        self._last_call: float | None = None
        self._history: deque[float] = deque()

    @classmethod
    def per_second(cls, requests: float, **kwargs) -> "RateLimiter":
        return cls(min_interval=1.0 / requests, **kwargs)

    def _purge_old(self, now: float):
        cutoff = now - DAY_SECONDS
        while self._history and self._history[0] < cutoff:
            self._history.popleft()

    @property
    def remaining_today(self) -> int | None:
        if self.daily_quota is None:
            return None
        self._purge_old(self._clock())
        return max(0, self.daily_quota - len(self._history))

    def acquire(self):
        """Block until the next request may be sent."""
        now = self._clock()

        if self.daily_quota is not None:
            self._purge_old(now)
            if len(self._history) >= self.daily_quota:
                retry_after = self._history[0] + DAY_SECONDS - now
                raise TransientError(
                    f"Daily request quota of {self.daily_quota} exhausted",
                    retry_after=retry_after,
                )

        if self._last_call is not None:
            elapsed = now - self._last_call
            if elapsed < self.min_interval:
                wait = self.min_interval - elapsed
                log.debug("Rate limit: sleeping %.3fs", wait)
                self._sleep(wait)

        self._last_call = self._clock()
        self._history.append(self._last_call)
