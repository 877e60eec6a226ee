"""
Token-bucket rate limiting, keyed per authenticated user and route.

- In-memory buckets; a process restart resets them.
- Exposed as a FastAPI dependency factory so limits sit next to the route.
"""

import time
from typing import Callable, Dict

from fastapi import Depends

from arcade.core.auth import get_current_user
from arcade.core.errors import RateLimitError


class TokenBucket:
    def __init__(self, capacity: int, refill_rate_per_sec: float, time_fn: Callable[[], float] = time.monotonic):
        self.capacity = max(1, capacity)
        self.tokens = float(self.capacity)
        self.refill_rate = max(0.0, refill_rate_per_sec)
        self.time_fn = time_fn
        self.last_refill = self.time_fn()

    def _refill(self) -> None:
        now = self.time_fn()
        elapsed = now - self.last_refill
        if elapsed <= 0:
            return
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def allow(self, cost: float = 1.0) -> bool:
        self._refill()
        if self.tokens >= cost:
            self.tokens -= cost
            return True
        return False


class InMemoryRateLimiter:
    def __init__(self, time_fn: Callable[[], float] = time.monotonic):
        self.time_fn = time_fn
        self.buckets: Dict[str, TokenBucket] = {}

    def _bucket_for(self, key: str, per_minute: int) -> TokenBucket:
        if key not in self.buckets:
            # Burst equals the per-minute allowance
            self.buckets[key] = TokenBucket(capacity=per_minute, refill_rate_per_sec=per_minute / 60.0, time_fn=self.time_fn)
        return self.buckets[key]

    def allow(self, key: str, *, per_minute: int) -> bool:
        return self._bucket_for(key, per_minute).allow()

    def reset(self) -> None:
        self.buckets.clear()


limiter = InMemoryRateLimiter()


def per_user_limit(scope: str, per_minute: Callable[[], int]):
    """Build a dependency enforcing ``per_minute()`` requests per user for ``scope``.

    ``per_minute`` is read at request time so settings overrides apply.
    """

    async def dependency(user=Depends(get_current_user)):
        limit = max(1, int(per_minute()))
        if not limiter.allow(f"user:{user.user_id}:{scope}", per_minute=limit):
            raise RateLimitError(f"Rate limit exceeded for {scope}")
        return user

    return dependency
