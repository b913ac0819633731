"""Rolling-window request throttle.

A :class:`RateGovernor` keeps the issue times of recent requests and makes
callers wait until issuing one more would keep the trailing 60-second window
at or below ``max_requests_per_minute``.  The window is only reachable
through :meth:`RateGovernor.admit`.

One process-wide governor is shared by every request the service makes; see
``get_rate_governor`` and ``reset_rate_governor``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional

from stalecheck.core.config import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateGovernor:
    """Blocks callers until the rolling window has capacity.

    The purge, capacity check and append run under one ``asyncio.Lock``, so
    concurrent callers are admitted strictly one at a time and never share a
    last free slot.  A caller that has to wait keeps the lock while it
    sleeps; callers queued behind it are admitted in arrival order.
    """

    def __init__(
        self,
        max_requests_per_minute: int,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ) -> None:
        if max_requests_per_minute < 1:
            raise ValueError("max_requests_per_minute must be at least 1")
        self._max = max_requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._log = log or logger
        self._issued: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_requests_per_minute(self) -> int:
        return self._max

    def _purge(self, now: float) -> None:
        cutoff = now - WINDOW_SECONDS
        while self._issued and self._issued[0] <= cutoff:
            self._issued.popleft()

    async def admit(self) -> None:
        """Wait for a free slot in the window, then record the issue time."""
        async with self._lock:
            while True:
                now = self._clock()
                self._purge(now)
                if len(self._issued) < self._max:
                    self._issued.append(now)
                    return
                wait = max(0.0, WINDOW_SECONDS - (now - self._issued[0]))
                self._log.info(
                    "Rate window full (%d/%d); waiting %.2fs.",
                    len(self._issued),
                    self._max,
                    wait,
                )
                await self._sleep(wait)


# Module-level shared governor
_rate_governor: Optional[RateGovernor] = None


def get_rate_governor() -> RateGovernor:
    """Return the shared governor.  Creates one from settings if missing."""
    global _rate_governor  # noqa: PLW0603
    if _rate_governor is None:
        _rate_governor = RateGovernor(settings.max_requests_per_minute)
    return _rate_governor


def reset_rate_governor() -> None:
    """Drop the shared governor so the next call rebuilds it."""
    global _rate_governor  # noqa: PLW0603
    _rate_governor = None
