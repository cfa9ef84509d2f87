# core/rate_limiter.py
"""Minimum-interval gate shared by every caller of the generation endpoint."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class MinIntervalRateLimiter:
    """Leaky-bucket style gate: at most one acquisition per ``min_interval``.

    One instance is owned by the generation client and shared by reference, so
    all concurrent pipeline runs queue against the same watermark. The clock
    and sleep functions are injectable for deterministic tests.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_acquired: float | None = None
        self.total_wait_seconds = 0.0
        self.acquisitions = 0

    @property
    def last_acquired(self) -> float | None:
        """Clock reading of the most recent acquisition."""
        return self._last_acquired

    async def acquire(self) -> float:
        """Wait until the gate opens, then move the watermark.

        Returns:
            Seconds spent waiting.
        """
        async with self._lock:
            waited = 0.0
            if self._last_acquired is not None:
                elapsed = self._clock() - self._last_acquired
                remaining = self.min_interval - elapsed
                if remaining > 0:
                    logger.debug(
                        "Rate limiter holding call", wait_seconds=round(remaining, 3)
                    )
                    await self._sleep(remaining)
                    waited = remaining
            self._last_acquired = self._clock()
            self.acquisitions += 1
            self.total_wait_seconds += waited
            return waited

    def reset(self) -> None:
        self._last_acquired = None
        self.total_wait_seconds = 0.0
        self.acquisitions = 0
