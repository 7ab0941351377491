"""Client-side rate limiting and backoff for record store calls.

The token bucket lives for as long as the object that owns it. A process that
serves several invocations shares one bucket between them (refill and debit are
guarded by an asyncio lock); separate processes each get their own bucket, so
the aggregate rate under horizontal scaling is ``instances * rate``.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings (milliseconds)."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    jitter_ms: int = 1000


DEFAULT_RETRY_POLICY = RetryPolicy()


def calculate_backoff_delay(
    attempt: int,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    *,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """
    Delay in seconds before retry number ``attempt`` (0-based).

    delay = min(base * 2^attempt + uniform(0, jitter), max_delay)
    """
    exponential = policy.base_delay_ms * (2**attempt)
    jitter = rng(0, policy.jitter_ms) if policy.jitter_ms > 0 else 0
    return min(exponential + jitter, policy.max_delay_ms) / 1000.0


class TokenBucket:
    """
    Token bucket with continuous refill.

    Capacity equals the configured rate, so a burst of ``rate`` calls passes
    immediately and the steady state is ``rate`` calls per second.
    """

    def __init__(
        self,
        rate_per_second: float,
        *,
        clock: ClockFn = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        self.rate = float(rate_per_second)
        self.capacity = float(rate_per_second)
        self._tokens = self.capacity
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> float:
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_refill = now

    def wait_time(self) -> float:
        """Seconds until one token is available (0 if one is available now)."""
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self.rate

    async def acquire(self) -> float:
        """Take one token, suspending until it is available. Returns seconds waited."""
        async with self._lock:
            self._refill()
            waited = self.wait_time()
            if waited > 0:
                await self._sleep(waited)
                self._refill()
            self._tokens -= 1
            return waited
