# leadflow/rate_governor.py
"""Minimum-spacing and rolling-quota pacing for external calls."""
import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RateGovernor:
    """Paces acquisitions so that:

    - no two grants are less than ``min_interval`` seconds apart, and
    - no more than ``quota`` grants fall inside any trailing ``window``.

    ``acquire()`` never rejects, it only waits. Concurrent callers are
    serialized through one lock (asyncio locks wake waiters in FIFO order),
    so a burst of coroutines after a long idle period is released one
    spacing interval at a time rather than all at once.

    ``clock`` and ``sleep`` are injectable so tests can drive time.
    """

    def __init__(
        self,
        min_interval: float = 0.0,
        quota: Optional[int] = None,
        window: float = 3600.0,
        *,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        if quota is not None and quota <= 0:
            raise ValueError("quota must be a positive integer")
        if window <= 0:
            raise ValueError("window must be > 0")

        self.min_interval = min_interval
        self.quota = quota
        self.window = window
        self.name = name or "governor"
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_grant: Optional[float] = None
        self._grants: deque[float] = deque()
        self.total_granted = 0

    def __repr__(self) -> str:
        return (
            f"RateGovernor(name={self.name!r}, min_interval={self.min_interval}, "
            f"quota={self.quota}, window={self.window})"
        )

    def _evict(self, now: float):
        while self._grants and now - self._grants[0] >= self.window:
            self._grants.popleft()

    def _interval_wait(self, now: float) -> float:
        if self._last_grant is None:
            return 0.0
        return self.min_interval - (now - self._last_grant)

    def _quota_wait(self, now: float) -> float:
        if self.quota is None:
            return 0.0
        self._evict(now)
        if len(self._grants) < self.quota:
            return 0.0
        return self._grants[0] + self.window - now

    def wait_time(self, now: Optional[float] = None) -> float:
        """Seconds a caller arriving now would be suspended (ignoring queued callers)."""
        now = self._clock() if now is None else now
        return max(0.0, self._interval_wait(now), self._quota_wait(now))

    def remaining(self) -> Optional[int]:
        """Grants still available in the current window, or None if unbounded."""
        if self.quota is None:
            return None
        self._evict(self._clock())
        return self.quota - len(self._grants)

    def quota_exhausted(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def _record(self):
        now = self._clock()
        self._last_grant = now
        if self.quota is not None:
            self._grants.append(now)
        self.total_granted += 1

    async def acquire(self):
        """Wait until both constraints hold, then take a grant."""
        async with self._lock:
            while True:
                wait = self.wait_time()
                if wait <= 0:
                    break
                logger.debug("%s: waiting %.3fs", self.name, wait)
                await self._sleep(wait)
            self._record()

    async def acquire_within_quota(self) -> bool:
        """Take a grant only if the window still has room.

        Waits for the spacing interval like ``acquire()``, but returns False
        immediately instead of waiting out a full window. The capacity check
        and the grant happen under the same lock, so concurrent callers can
        never over-admit.
        """
        async with self._lock:
            if self._quota_wait(self._clock()) > 0:
                return False
            while True:
                wait = max(0.0, self._interval_wait(self._clock()))
                if wait <= 0:
                    break
                logger.debug("%s: waiting %.3fs", self.name, wait)
                await self._sleep(wait)
            self._record()
            return True
