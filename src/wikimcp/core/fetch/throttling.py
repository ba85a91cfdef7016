"""
Rate limiting utilities.

Enforces a minimum wall-clock spacing between operations that share a
throttle key. State is in-memory and owned by whoever constructs the
limiter.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable


class RateLimiter:
    """Per-key minimum-interval limiter.

    Features:
    - One "next available" timestamp per key
    - Callers on the same key are released in FIFO order
    - Async-safe with per-key locks
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize rate limiter.

        Args:
            clock: Time source in seconds
            sleep: Coroutine used to suspend the caller
        """
        self._clock = clock
        self._sleep = sleep
        self._next_available: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def wait(self, key: str, min_interval_ms: float) -> None:
        """Suspend until the key may be used again, then claim it.

        Args:
            key: Throttle key shared by the operations to pace
            min_interval_ms: Minimum spacing between releases on this key
        """
        if min_interval_ms <= 0:
            return

        async with self._locks[key]:
            delay = max(0.0, self._next_available.get(key, 0.0) - self._clock())
            if delay > 0:
                await self._sleep(delay)

            # Measured after waking so overlapping callers serialize
            self._next_available[key] = self._clock() + min_interval_ms / 1000.0

    def next_available(self, key: str) -> float:
        """Clock time at which the key is next free (0 if never used)."""
        return self._next_available.get(key, 0.0)

    def clear(self) -> None:
        self._next_available.clear()
        self._locks.clear()
