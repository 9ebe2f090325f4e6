"""Token-bucket rate limiter for the upstream content API.

One limiter instance is shared by everything in a worker process that talks
to the content API: page fetches in the task loop as well as the cover
renders that run concurrently after it. Bucket mutation happens under a
``threading.Lock`` so the limiter is safe from threads and coroutines alike.
"""

import time
import asyncio
import logging
import threading
from typing import Awaitable, Callable, Optional

from .errors import UpstreamRateLimited
from .models import RateLimitConfig

logger = logging.getLogger(__name__)


class TokenBucketLimiter:
    """Capacity ``points``, refilled linearly over ``duration_s`` seconds.

    The bucket starts full. ``consume`` never lets the balance go negative:
    a request it cannot cover raises ``UpstreamRateLimited`` with the time
    until enough points have refilled.
    """

    def __init__(
        self,
        points: int = 800,
        duration_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if points <= 0:
            raise ValueError(f"points must be positive, got {points}")
        if duration_s <= 0:
            raise ValueError(f"duration_s must be positive, got {duration_s}")

        self.capacity = float(points)
        self.duration_s = float(duration_s)
        self.refill_per_s = self.capacity / self.duration_s

        self._clock = clock
        self._sleep = sleep
        self._async_sleep = async_sleep
        self._lock = threading.Lock()
        self._tokens = self.capacity
        self._updated_at = clock()

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs) -> "TokenBucketLimiter":
        return cls(points=config.points, duration_s=config.duration_s, **kwargs)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_s)
        self._updated_at = now

    @property
    def remaining(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def consume(self, n: int = 1) -> float:
        """Take ``n`` points or raise ``UpstreamRateLimited``.

        Args:
            n: Points to consume (must not exceed the bucket capacity)

        Returns:
            Remaining balance after the consumption

        Raises:
            ValueError: n is non-positive or larger than the capacity
            UpstreamRateLimited: not enough points; ``wait_s`` says how long
                until the request could succeed
        """
        if n <= 0:
            raise ValueError(f"n must be positive, got {n}")
        if n > self.capacity:
            raise ValueError(f"Cannot consume {n} points from a bucket of {self.capacity:.0f}")

        with self._lock:
            self._refill()
            if self._tokens >= n:
                self._tokens -= n
                return self._tokens
            wait_s = (n - self._tokens) / self.refill_per_s
            raise UpstreamRateLimited(wait_s=wait_s, remaining=self._tokens)

    def wait_until_available(self, n: int = 1) -> float:
        """Block until ``n`` points are consumed. Never gives up."""
        while True:
            try:
                return self.consume(n)
            except UpstreamRateLimited as e:
                logger.warning("Content API rate limit exceeded. Retrying in %.0f ms.", e.wait_s * 1000)
                self._sleep(e.wait_s)

    async def wait_until_available_async(self, n: int = 1) -> float:
        """Coroutine flavour of ``wait_until_available`` for the render loop."""
        while True:
            try:
                return self.consume(n)
            except UpstreamRateLimited as e:
                logger.warning("Content API rate limit exceeded. Retrying in %.0f ms.", e.wait_s * 1000)
                await self._async_sleep(e.wait_s)


def build_limiter(config: Optional[RateLimitConfig] = None) -> TokenBucketLimiter:
    """Construct the process-wide limiter from configuration."""
    return TokenBucketLimiter.from_config(config or RateLimitConfig())
