"""
Identity Cooldown
=================
Per-identity resend cooldown with escalation after failed verifications.
"""

import math
from datetime import datetime, timedelta

import structlog

from otpguard.config import OtpGuardConfig
from otpguard.exceptions import RateLimited
from otpguard.identity import mask_identity
from otpguard.otp.models import OtpState
from otpguard.otp.store import OtpStateStore
from .counters import CounterStore
from .models import CooldownDecision

logger = structlog.get_logger(__name__)

ESCALATION_THRESHOLD = 3


def seconds_until(instant: datetime, now: datetime) -> int:
    """Whole seconds from now until instant, rounded up, at least 1."""
    return max(math.ceil((instant - now).total_seconds()), 1)


class IdentityRateLimiter:
    """
    Enforces the wait between code generations for one identity.

    Cooldown length by failed verifications inside the failure window:
    0 -> base; 1-2 -> 2x base; 3+ -> the escalated floor (never below 2x base).
    """

    def __init__(
        self,
        store: OtpStateStore,
        counters: CounterStore,
        base_cooldown_seconds: int = 60,
        escalated_cooldown_seconds: int = 300,
        failure_window_seconds: int = 3600,
        prefix: str = "otp",
    ):
        self.store = store
        self.counters = counters
        self.base_cooldown_seconds = base_cooldown_seconds
        self.escalated_cooldown_seconds = escalated_cooldown_seconds
        self.failure_window_seconds = failure_window_seconds
        self.prefix = prefix

    @classmethod
    def from_config(
        cls, config: OtpGuardConfig, store: OtpStateStore, counters: CounterStore
    ) -> "IdentityRateLimiter":
        return cls(
            store,
            counters,
            base_cooldown_seconds=config.resend_cooldown_seconds,
            escalated_cooldown_seconds=config.escalated_cooldown_seconds,
            failure_window_seconds=config.failure_window_seconds,
            prefix=config.key_prefix,
        )

    def failures_key(self, identity: str) -> str:
        return f"{self.prefix}:failures:{identity}"

    def cooldown_for(self, failures: int) -> int:
        """Cooldown length in seconds for a number of recent failures."""
        if failures >= ESCALATION_THRESHOLD:
            return max(self.escalated_cooldown_seconds, self.base_cooldown_seconds * 2)
        if failures > 0:
            return self.base_cooldown_seconds * 2
        return self.base_cooldown_seconds

    async def check_and_extend(self, identity: str, now: datetime) -> CooldownDecision:
        """
        Gate a code generation.

        Args:
            identity: Normalized identity
            now: Current instant

        Returns:
            CooldownDecision with the stored state and the new cooldown

        Raises:
            RateLimited: While the stored cooldown is active, carrying the
                exact remaining seconds
        """
        state = await self.store.load(identity) or OtpState.empty()

        if state.in_cooldown(now):
            retry_after = seconds_until(state.cooldown_until, now)
            logger.info(
                "OTP resend blocked by cooldown",
                identity=mask_identity(identity),
                retry_after=retry_after,
            )
            raise RateLimited(retry_after, state.cooldown_until)

        failures = await self.counters.get(self.failures_key(identity))
        cooldown_seconds = self.cooldown_for(failures)
        if failures:
            logger.info(
                "OTP cooldown escalated",
                identity=mask_identity(identity),
                failures=failures,
                cooldown_seconds=cooldown_seconds,
            )

        return CooldownDecision(
            state=state,
            cooldown_until=now + timedelta(seconds=cooldown_seconds),
            cooldown_seconds=cooldown_seconds,
            failures=failures,
        )

    async def record_failure(self, identity: str) -> int:
        """Count a failed verification; returns failures in the current window."""
        count, _ = await self.counters.increment(self.failures_key(identity), self.failure_window_seconds)
        return count

    async def reset_failures(self, identity: str) -> None:
        await self.counters.delete(self.failures_key(identity))
