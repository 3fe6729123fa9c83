"""
Rate Limit Models
=================
Data models for rate limiting decisions.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from otpguard.otp.models import OtpState


class RateLimitResult(str, Enum):
    """Rate limit decision result."""
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    DEGRADED = "degraded"


@dataclass
class RateLimitInfo:
    """Address throttle check result with quota information."""
    allowed: bool
    remaining: int
    limit: int
    retry_after: Optional[int] = None  # Seconds until retry allowed
    degraded: bool = False  # Backend unavailable, request let through

    @property
    def result(self) -> RateLimitResult:
        if self.degraded:
            return RateLimitResult.DEGRADED
        return RateLimitResult.ALLOWED if self.allowed else RateLimitResult.BLOCKED


@dataclass(frozen=True)
class CooldownDecision:
    """Cooldown granted to a new code generation."""
    state: OtpState
    cooldown_until: datetime
    cooldown_seconds: int
    failures: int = 0
