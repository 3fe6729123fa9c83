"""
Rate Limiting
=============
Per-identity cooldowns and per-address throttling with Redis counters.
"""

from .models import RateLimitResult, RateLimitInfo, CooldownDecision
from .counters import CounterStore, InMemoryCounterStore, RedisCounterStore
from .cooldown import IdentityRateLimiter, ESCALATION_THRESHOLD
from .source import SourceRateLimiter

__all__ = [
    # Models
    "RateLimitResult",
    "RateLimitInfo",
    "CooldownDecision",
    # Counters
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    # Limiters
    "IdentityRateLimiter",
    "SourceRateLimiter",
    "ESCALATION_THRESHOLD",
]
