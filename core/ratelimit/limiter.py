"""Async token bucket for pacing outbound venue calls."""

from __future__ import annotations

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class TokenBucket:
    """Token bucket rate limiter.

    Allows burst traffic up to the capacity, then refills at a steady rate.
    Instances are explicitly owned by whoever paces with them.
    """

    def __init__(self, rate_per_second: float, capacity: float | None = None, *, name: str = "bucket") -> None:
        if rate_per_second <= 0:
            raise ValueError(f"rate_per_second must be > 0, got {rate_per_second}")
        self.rate_per_second = rate_per_second
        self.capacity = capacity if capacity is not None else rate_per_second
        self.tokens = float(self.capacity)
        self.last_update = time.monotonic()
        self.name = name
        self._lock = asyncio.Lock()

    async def acquire(self, tokens: int = 1) -> None:
        """Acquire tokens, waiting until enough have refilled."""
        async with self._lock:
            while True:
                now = time.monotonic()
                elapsed = now - self.last_update
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate_per_second)
                self.last_update = now

                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return

                wait_time = (tokens - self.tokens) / self.rate_per_second
                logger.debug("Rate limit reached for %s, waiting %.2fs", self.name, wait_time)
                await asyncio.sleep(min(wait_time, 1.0))
