"""
OTP State Store
===============
TTL-bounded storage of one OtpState per identity.

- RedisOtpStateStore: For production (Redis hash per identity, native expiry)
- InMemoryOtpStateStore: For development/testing

The store TTL is only a backstop. Expiry decisions are made by the
engine against its own clock.
"""

import time
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import structlog
from redis.exceptions import ResponseError

from otpguard.identity import mask_identity
from .models import OtpState

logger = structlog.get_logger(__name__)

ATTEMPTS_FIELD = "attempts"


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class OtpStateStore:
    """
    Base store holding the save/load rules shared by all backends.

    Subclasses implement the raw ``_read``, ``_write``, ``_delete`` and
    ``_increment`` primitives.
    """

    def __init__(self, prefix: str = "otp"):
        self.prefix = prefix

    def key(self, identity: str) -> str:
        return f"{self.prefix}:{identity}"

    async def load(self, identity: str) -> Optional[OtpState]:
        """
        Load the state for an identity.

        Corrupt records (schema drift, wrong value type) are deleted and
        reported as absent.
        """
        key = self.key(identity)
        try:
            raw = await self._read(key)
            if not raw:
                return None
            state = OtpState.from_mapping(raw)
        except (ValueError, TypeError) as e:
            logger.warning(
                "Discarding unreadable OTP state",
                identity=mask_identity(identity),
                error=str(e),
            )
            await self._delete(key)
            return None

        if state.is_empty:
            # Leftover attempt counter without a code or token
            await self._delete(key)
            return None
        return state

    async def save(self, identity: str, state: OtpState, now: datetime) -> None:
        """
        Persist a state with a TTL matching its latest live instant.

        A state with nothing left alive is deleted instead of written.
        """
        ttl_seconds = state.ttl_seconds(now)
        if ttl_seconds <= 0 or state.is_empty:
            await self.delete(identity)
            return
        await self._write(self.key(identity), state.to_mapping(), ttl_seconds)

    async def delete(self, identity: str) -> None:
        await self._delete(self.key(identity))

    async def increment_attempts(self, identity: str, state: OtpState, now: datetime) -> int:
        """
        Atomically add one failed attempt and return the new count.

        If the record vanished concurrently, the recreated stub gets a TTL
        so it cannot outlive the code it counted against.
        """
        ttl_seconds = max(state.ttl_seconds(now), 1)
        return await self._increment(self.key(identity), ATTEMPTS_FIELD, ttl_seconds)

    async def _read(self, key: str) -> Optional[Dict[str, str]]:
        raise NotImplementedError

    async def _write(self, key: str, mapping: Dict[str, str], ttl_seconds: int) -> None:
        raise NotImplementedError

    async def _delete(self, key: str) -> None:
        raise NotImplementedError

    async def _increment(self, key: str, field: str, ttl_seconds: int) -> int:
        raise NotImplementedError


class RedisOtpStateStore(OtpStateStore):
    """
    Redis implementation of OtpStateStore.

    Each identity is a hash so attempts can be incremented with HINCRBY.
    Requires Redis 7+ (EXPIRE ... NX).

    Usage:
        import redis.asyncio as redis

        client = redis.Redis.from_url("redis://localhost:6379", decode_responses=True)
        store = RedisOtpStateStore(client)
    """

    def __init__(self, redis_client: Any, prefix: str = "otp"):
        super().__init__(prefix)
        self.redis = redis_client

    async def _read(self, key: str) -> Optional[Dict[str, str]]:
        try:
            data = await self.redis.hgetall(key)
        except ResponseError as e:
            # WRONGTYPE: a value written by an older schema
            raise ValueError(str(e)) from e
        if not data:
            return None
        return {_decode(k): _decode(v) for k, v in data.items()}

    async def _write(self, key: str, mapping: Dict[str, str], ttl_seconds: int) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(key, mapping=mapping)
            pipe.expire(key, ttl_seconds)
            await pipe.execute()

    async def _delete(self, key: str) -> None:
        await self.redis.delete(key)

    async def _increment(self, key: str, field: str, ttl_seconds: int) -> int:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hincrby(key, field, 1)
            pipe.expire(key, ttl_seconds, nx=True)
            count, _ = await pipe.execute()
        return int(count)


class InMemoryOtpStateStore(OtpStateStore):
    """
    In-memory implementation of OtpStateStore.

    For development and testing only. Entries expire lazily on access.
    """

    def __init__(self, prefix: str = "otp"):
        super().__init__(prefix)
        # Key -> (mapping, monotonic deadline)
        self._records: Dict[str, Tuple[Dict[str, str], float]] = {}

    async def _read(self, key: str) -> Optional[Dict[str, str]]:
        record = self._live(key)
        return dict(record[0]) if record else None

    async def _write(self, key: str, mapping: Dict[str, str], ttl_seconds: int) -> None:
        self._records[key] = (dict(mapping), time.monotonic() + ttl_seconds)

    async def _delete(self, key: str) -> None:
        self._records.pop(key, None)

    async def _increment(self, key: str, field: str, ttl_seconds: int) -> int:
        record = self._live(key)
        if record is None:
            record = ({}, time.monotonic() + ttl_seconds)
        mapping, deadline = record
        count = int(mapping.get(field, 0)) + 1
        mapping[field] = str(count)
        self._records[key] = (mapping, deadline)
        return count

    def ttl(self, key: str) -> Optional[float]:
        """Remaining backstop TTL for a raw key, or None when absent."""
        record = self._live(key)
        return record[1] - time.monotonic() if record else None

    def clear(self) -> None:
        """Clear all records (for testing)."""
        self._records.clear()

    def _live(self, key: str) -> Optional[Tuple[Dict[str, str], float]]:
        record = self._records.get(key)
        if record is None:
            return None
        if record[1] <= time.monotonic():
            del self._records[key]
            return None
        return record
