"""
Window Counters
===============
Atomic increment-and-expire counters backing the rate limiters.

- RedisCounterStore: For production (INCR + EXPIRE NX in one transaction)
- InMemoryCounterStore: For development/testing
"""

import math
import time
from typing import Any, Dict, Optional, Tuple


class CounterStore:
    """Interface for windowed counters."""

    async def increment(self, key: str, window_seconds: int) -> Tuple[int, Optional[int]]:
        """
        Increment a counter, arming its expiry on the first increment.

        Args:
            key: Counter key
            window_seconds: Lifetime of the counter from its first increment

        Returns:
            Tuple of (count after increment, remaining TTL seconds or None)
        """
        raise NotImplementedError

    async def get(self, key: str) -> int:
        """Current count, 0 when absent."""
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError


class RedisCounterStore(CounterStore):
    """
    Redis-backed counters.

    INCR, EXPIRE NX and TTL run in a single MULTI/EXEC so the window is
    armed exactly once even under concurrent increments. Requires Redis 7+.
    """

    def __init__(self, redis_client: Any):
        self.redis = redis_client

    async def increment(self, key: str, window_seconds: int) -> Tuple[int, Optional[int]]:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window_seconds, nx=True)
            pipe.ttl(key)
            count, _, ttl = await pipe.execute()
        ttl = int(ttl)
        return int(count), ttl if ttl > 0 else None

    async def get(self, key: str) -> int:
        value = await self.redis.get(key)
        return int(value) if value else 0

    async def delete(self, key: str) -> None:
        await self.redis.delete(key)


class InMemoryCounterStore(CounterStore):
    """
    In-memory windowed counters.

    For development and testing only.
    """

    def __init__(self):
        # Key -> (count, monotonic deadline)
        self._counters: Dict[str, Tuple[int, float]] = {}

    async def increment(self, key: str, window_seconds: int) -> Tuple[int, Optional[int]]:
        now = time.monotonic()
        count, deadline = self._counters.get(key, (0, 0.0))
        if deadline <= now:
            count, deadline = 0, now + window_seconds
        count += 1
        self._counters[key] = (count, deadline)
        return count, max(math.ceil(deadline - now), 1)

    async def get(self, key: str) -> int:
        count, deadline = self._counters.get(key, (0, 0.0))
        return count if deadline > time.monotonic() else 0

    async def delete(self, key: str) -> None:
        self._counters.pop(key, None)

    def clear(self) -> None:
        """Clear all counters (for testing)."""
        self._counters.clear()
