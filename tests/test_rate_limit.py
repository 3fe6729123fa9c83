"""
Unit Tests for Rate Limiting
============================
Identity cooldowns, window counters and the per-address limiter.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from otpguard.exceptions import RateLimited
from otpguard.otp.models import OtpState, Purpose
from otpguard.rate_limit import (
    IdentityRateLimiter,
    InMemoryCounterStore,
    RateLimitResult,
    RedisCounterStore,
    SourceRateLimiter,
)

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
PATHS = ["/api/auth/verify-code", "/api/auth/forgot-password/"]


class TestIdentityRateLimiter:
    """Tests for per-identity cooldown and escalation."""

    @pytest.mark.parametrize(
        "failures,expected",
        [(0, 60), (1, 120), (2, 120), (3, 300), (10, 300)],
    )
    def test_cooldown_for(self, failures, expected, store, counters):
        """Cooldown escalates with recent failures."""
        limiter = IdentityRateLimiter(store, counters, base_cooldown_seconds=60, escalated_cooldown_seconds=300)
        assert limiter.cooldown_for(failures) == expected

    def test_escalated_never_below_double_base(self, store, counters):
        """The escalated floor yields to 2x base when that is longer."""
        limiter = IdentityRateLimiter(store, counters, base_cooldown_seconds=200, escalated_cooldown_seconds=300)
        assert limiter.cooldown_for(3) == 400

    @pytest.mark.asyncio
    async def test_first_request_gets_base(self, cooldown):
        """No history: base cooldown from now."""
        decision = await cooldown.check_and_extend("a@x.com", NOW)

        assert decision.cooldown_seconds == 60
        assert decision.cooldown_until == NOW + timedelta(seconds=60)
        assert decision.state.is_empty
        assert decision.failures == 0

    @pytest.mark.asyncio
    async def test_active_cooldown_reports_exact_remaining(self, cooldown, store):
        """Remaining seconds come from the stored cooldown, rounded up."""
        state = OtpState.empty().start_otp(
            "hash", Purpose.REGISTRATION, NOW, timedelta(minutes=10), NOW + timedelta(seconds=45)
        )
        await store.save("a@x.com", state, NOW)

        with pytest.raises(RateLimited) as exc_info:
            await cooldown.check_and_extend("a@x.com", NOW + timedelta(seconds=10, milliseconds=200))

        assert exc_info.value.retry_after_seconds == 35
        assert exc_info.value.cooldown_until == NOW + timedelta(seconds=45)
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_sub_second_remaining_is_one(self, cooldown, store):
        """Less than a second left still reports 1."""
        state = OtpState.empty().start_otp(
            "hash", Purpose.REGISTRATION, NOW, timedelta(minutes=10), NOW + timedelta(seconds=1)
        )
        await store.save("a@x.com", state, NOW)

        with pytest.raises(RateLimited) as exc_info:
            await cooldown.check_and_extend("a@x.com", NOW + timedelta(microseconds=999999))

        assert exc_info.value.retry_after_seconds == 1

    @pytest.mark.asyncio
    async def test_failures_escalate_and_reset(self, cooldown):
        """Recorded failures escalate the next cooldown until reset."""
        for expected in (1, 2, 3):
            assert await cooldown.record_failure("a@x.com") == expected

        decision = await cooldown.check_and_extend("a@x.com", NOW)
        assert decision.cooldown_seconds == 300
        assert decision.failures == 3

        await cooldown.reset_failures("a@x.com")
        decision = await cooldown.check_and_extend("a@x.com", NOW)
        assert decision.cooldown_seconds == 60

    @pytest.mark.asyncio
    async def test_failures_are_per_identity(self, cooldown):
        """One identity's failures do not affect another."""
        await cooldown.record_failure("a@x.com")

        decision = await cooldown.check_and_extend("b@x.com", NOW)
        assert decision.cooldown_seconds == 60


class TestInMemoryCounterStore:
    """Tests for in-memory window counters."""

    @pytest.mark.asyncio
    async def test_increment_and_get(self):
        """Counts accumulate within a window."""
        counters = InMemoryCounterStore()

        assert await counters.increment("k", 60) == (1, 60)
        count, ttl = await counters.increment("k", 60)
        assert count == 2
        assert 1 <= ttl <= 60
        assert await counters.get("k") == 2

    @pytest.mark.asyncio
    async def test_window_expires(self):
        """A new window starts after the old one ends."""
        counters = InMemoryCounterStore()

        await counters.increment("k", 10)
        await counters.increment("k", 10)
        # Force the window deadline into the past
        counters._counters["k"] = (2, 0.0)

        assert await counters.get("k") == 0
        assert await counters.increment("k", 10) == (1, 10)

    @pytest.mark.asyncio
    async def test_delete(self):
        """Deleted counters read as zero."""
        counters = InMemoryCounterStore()
        await counters.increment("k", 60)

        await counters.delete("k")

        assert await counters.get("k") == 0


class TestRedisCounterStore:
    """Tests for Redis counter commands."""

    @pytest.mark.asyncio
    async def test_increment_arms_expiry_once(self):
        """INCR, EXPIRE NX and TTL run in one transaction."""
        pipe = MagicMock()
        pipe.__aenter__.return_value = pipe
        pipe.execute = AsyncMock(return_value=[4, False, 37])
        client = MagicMock()
        client.pipeline.return_value = pipe

        count, ttl = await RedisCounterStore(client).increment("otp:ip:1.2.3.4", 600)

        assert (count, ttl) == (4, 37)
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.incr.assert_called_once_with("otp:ip:1.2.3.4")
        pipe.expire.assert_called_once_with("otp:ip:1.2.3.4", 600, nx=True)
        pipe.ttl.assert_called_once_with("otp:ip:1.2.3.4")

    @pytest.mark.asyncio
    async def test_missing_ttl_is_none(self):
        """Negative TTL replies map to None."""
        pipe = MagicMock()
        pipe.__aenter__.return_value = pipe
        pipe.execute = AsyncMock(return_value=[1, True, -1])
        client = MagicMock()
        client.pipeline.return_value = pipe

        assert await RedisCounterStore(client).increment("k", 600) == (1, None)

    @pytest.mark.asyncio
    async def test_get(self):
        """Absent counters read as zero."""
        client = MagicMock()
        client.get = AsyncMock(side_effect=[b"7", None])
        store = RedisCounterStore(client)

        assert await store.get("k") == 7
        assert await store.get("k") == 0


class TestSourceRateLimiter:
    """Tests for the per-address limiter."""

    def _limiter(self, counters=None, max_requests=3):
        return SourceRateLimiter(
            counters or InMemoryCounterStore(),
            PATHS,
            window_seconds=600,
            max_requests=max_requests,
        )

    @pytest.mark.asyncio
    async def test_allows_up_to_max(self):
        """Requests up to the cap pass with quota info."""
        limiter = self._limiter()

        infos = [await limiter.check("/api/auth/verify-code", "1.2.3.4") for _ in range(3)]

        assert [info.remaining for info in infos] == [2, 1, 0]
        assert all(info.result == RateLimitResult.ALLOWED for info in infos)

    @pytest.mark.asyncio
    async def test_blocks_over_max(self):
        """The request after the cap is rejected with a retry time."""
        limiter = self._limiter()
        for _ in range(3):
            await limiter.check("/api/auth/verify-code", "1.2.3.4")

        with pytest.raises(RateLimited) as exc_info:
            await limiter.check("/api/auth/verify-code", "1.2.3.4")

        assert 1 <= exc_info.value.retry_after_seconds <= 600

    @pytest.mark.asyncio
    async def test_addresses_are_independent(self):
        """Each address has its own window."""
        limiter = self._limiter(max_requests=1)
        await limiter.check("/api/auth/verify-code", "1.2.3.4")

        assert await limiter.check("/api/auth/verify-code", "5.6.7.8") is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path",
        ["/api/auth/verify-code", "/api/auth/verify-code/", "/api/auth/forgot-password", "/api/auth/forgot-password/"],
    )
    async def test_trailing_slash_variants(self, path):
        """Limited paths match with or without a trailing slash."""
        assert await self._limiter().check(path, "1.2.3.4") is not None

    @pytest.mark.asyncio
    async def test_unlimited_path_is_noop(self):
        """Other paths are not counted."""
        counters = InMemoryCounterStore()
        limiter = self._limiter(counters)

        assert await limiter.check("/api/products", "1.2.3.4") is None
        assert await counters.get("otp:ip:1.2.3.4") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("address", [None, "", "   "])
    async def test_blank_address_is_noop(self, address):
        """Requests without an address are let through."""
        assert await self._limiter().check("/api/auth/verify-code", address) is None

    @pytest.mark.asyncio
    async def test_retry_after_falls_back_to_window(self):
        """Without a TTL the full window is reported."""
        counters = MagicMock()
        counters.increment = AsyncMock(return_value=(4, None))
        limiter = self._limiter(counters)

        with pytest.raises(RateLimited) as exc_info:
            await limiter.check("/api/auth/verify-code", "1.2.3.4")

        assert exc_info.value.retry_after_seconds == 600
        counters.increment.assert_awaited_once_with("otp:ip:1.2.3.4", 600)

    @pytest.mark.asyncio
    async def test_fails_open_on_backend_error(self):
        """Backend errors let the request through as degraded."""
        counters = MagicMock()
        counters.increment = AsyncMock(side_effect=RedisConnectionError("down"))
        limiter = self._limiter(counters)

        info = await limiter.check("/api/auth/verify-code", "1.2.3.4")

        assert info.allowed is True
        assert info.result == RateLimitResult.DEGRADED

    def test_from_config(self, config, counters):
        """Config supplies paths, window and cap."""
        limiter = SourceRateLimiter.from_config(config, counters)

        assert limiter.window_seconds == 600
        assert limiter.max_requests == 10
        assert limiter.is_limited("/api/auth/reset-password/")
