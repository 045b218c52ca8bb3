from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

Sleep = Callable[[float], Awaitable[None]]


class RateLimitScheduler:
    """Gate in front of every batched generation call."""

    async def wait(self) -> None:
        raise NotImplementedError

    def reset(self) -> None:
        pass


class FixedIntervalScheduler(RateLimitScheduler):
    """No delay before the first call of a run, ``delay_sec`` before each later one."""

    def __init__(self, delay_sec: float = 3.0, sleep: Optional[Sleep] = None):
        if delay_sec < 0:
            raise ValueError("delay_sec must be >= 0")
        self.delay_sec = delay_sec
        self.sleep = sleep or asyncio.sleep
        self._calls = 0

    async def wait(self) -> None:
        if self._calls > 0 and self.delay_sec > 0:
            await self.sleep(self.delay_sec)
        self._calls += 1

    def reset(self) -> None:
        self._calls = 0


class TokenBucketScheduler(RateLimitScheduler):
    """Allows bursts of ``capacity`` calls, refilled at ``rate_per_sec``."""

    def __init__(
        self,
        rate_per_sec: float,
        capacity: int = 1,
        sleep: Optional[Sleep] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate_per_sec <= 0:
            raise ValueError("rate_per_sec must be > 0")
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.rate_per_sec = rate_per_sec
        self.capacity = capacity
        self.sleep = sleep or asyncio.sleep
        self.clock = clock
        self._tokens = float(capacity)
        self._updated = clock()

    def _refill(self) -> None:
        now = self.clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate_per_sec)
        self._updated = now

    async def wait(self) -> None:
        self._refill()
        if self._tokens < 1:
            deficit = (1 - self._tokens) / self.rate_per_sec
            await self.sleep(deficit)
            self._refill()
            # An injected sleep may not advance the clock.
            self._tokens = max(self._tokens, 1.0)
        self._tokens -= 1

    def reset(self) -> None:
        self._tokens = float(self.capacity)
        self._updated = self.clock()
