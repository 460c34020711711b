"""Pacing for backend calls.

* ``ExponentialBackoff`` — in-place retry delays for transient failures.
* ``rate_limit_wait`` — how long a rate-limited backend is left alone.
* ``ConcurrencyLimiter`` — caps how many artifacts of one layer are in
  flight at once.
"""

from __future__ import annotations

import asyncio

RATE_LIMIT_FLOOR_S = 60.0
SERVER_ERROR_COOLDOWN_S = 30.0


class ExponentialBackoff:
    """Yields ``initial_s``, ``2 * initial_s``, ``4 * initial_s`` ... capped at ``max_s``."""

    def __init__(self, *, initial_s: float = 0.5, max_s: float = RATE_LIMIT_FLOOR_S) -> None:
        if initial_s < 0:
            raise ValueError("initial_s must be non-negative")
        if max_s < initial_s:
            raise ValueError("max_s must be >= initial_s")
        self._next = initial_s
        self._cap = max_s

    def __iter__(self) -> ExponentialBackoff:
        return self

    def __next__(self) -> float:
        delay = self._next
        self._next = min(delay * 2, self._cap)
        return delay


def rate_limit_wait(retry_after: float | None) -> float:
    """Seconds to stay away from a rate-limited backend.

    The server's suggestion is honoured only when it is longer than the
    floor; ``Retry-After: 5`` still yields 60 seconds.
    """
    if retry_after is None or retry_after < RATE_LIMIT_FLOOR_S:
        return RATE_LIMIT_FLOOR_S
    return float(retry_after)


class ConcurrencyLimiter:
    """``async with limiter:`` admits at most *max_concurrent* holders."""

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> None:
        await self._semaphore.acquire()

    async def __aexit__(self, *exc_info: object) -> None:
        self._semaphore.release()


__all__ = [
    "ConcurrencyLimiter",
    "ExponentialBackoff",
    "RATE_LIMIT_FLOOR_S",
    "SERVER_ERROR_COOLDOWN_S",
    "rate_limit_wait",
]
