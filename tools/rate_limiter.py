"""
RateLimiter — token bucket for outbound API calls.

Each caller reserves a token up front and then sleeps until its slot comes
due, so concurrent waiters queue up in order without holding a lock while
they sleep. The bucket may go negative; the debt is what later callers
wait out.

The storyteller shares the module-level ``gemini_limiter`` (one API key per
process). Each ``FirebaseTransport`` builds its own bucket with
``database_bucket()`` so two connections never throttle each other.
"""

import asyncio
import logging
import time

logger = logging.getLogger('RateLimiter')


class RateLimiter:
    """Token bucket.

    Holds up to ``capacity`` tokens and refills ``per_second`` tokens each
    second. ``await acquire()`` takes a token, sleeping first if the bucket
    is in debt.
    """

    def __init__(self, capacity: int = 15, per_second: float = 0.25, name: str = "default"):
        self.capacity = capacity
        self.per_second = per_second
        self.name = name
        self._tokens = float(capacity)
        self._stamp = time.monotonic()

    def _top_up(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.capacity, self._tokens + (now - self._stamp) * self.per_second)
        self._stamp = now

    def reserve(self) -> float:
        """Take a token now and return how long the caller must wait for it."""
        self._top_up()
        self._tokens -= 1.0
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self.per_second

    async def acquire(self) -> None:
        delay = self.reserve()
        if delay > 0:
            logger.warning(f"[{self.name}] bucket empty, waiting {delay:.2f}s")
            await asyncio.sleep(delay)

    @property
    def available(self) -> float:
        self._top_up()
        return max(0.0, self._tokens)


def database_bucket(name: str = "database") -> RateLimiter:
    """Realtime database writes: short bursts are fine, sustained floods are not."""
    return RateLimiter(capacity=20, per_second=10.0, name=name)


# Gemini Flash free tier: 15 requests a minute.
gemini_limiter = RateLimiter(capacity=15, per_second=0.25, name="gemini")
