"""Clock abstraction for cooldowns and backoff waits.

Backend health uses expiry timestamps that are compared against
``Clock.now()`` on every readiness check, and every backoff wait goes
through ``Clock.sleep()``.  Swapping in ``ManualClock`` makes cooldown
and retry timing fully deterministic in tests.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> float:
        """Seconds on a monotonic timeline."""
        ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Real time: ``time.monotonic`` and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


class ManualClock:
    """Clock that only moves when told to.

    ``sleep()`` advances the clock instantly and records the requested
    duration in ``sleeps`` so callers can assert on backoff schedules.
    """

    def __init__(self, start: float = 1_000.0) -> None:
        self._now = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self._now += seconds
        # Still yield so concurrent tasks interleave as they would for real
        await asyncio.sleep(0)
