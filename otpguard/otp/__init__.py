"""
OTP Lifecycle
=============
Code generation, hashing, state storage and the engine that ties them together.

The engine lives in ``otpguard.otp.engine`` and is imported from there
(it depends on ``otpguard.rate_limit``, which depends on these models).
"""

from .models import Purpose, OtpState, Account, GenerateResult, VerifyResult
from .generator import (
    CodeGenerator,
    generate_reset_token,
    hash_reset_token,
    verify_reset_token,
)
from .hashing import CodeHasher, get_cached_argon2_hasher
from .store import OtpStateStore, RedisOtpStateStore, InMemoryOtpStateStore
from .ports import UserDirectory, Notifier, Clock, SystemClock

__all__ = [
    # Models
    "Purpose",
    "OtpState",
    "Account",
    "GenerateResult",
    "VerifyResult",
    # Generator
    "CodeGenerator",
    "generate_reset_token",
    "hash_reset_token",
    "verify_reset_token",
    # Hashing
    "CodeHasher",
    "get_cached_argon2_hasher",
    # Store
    "OtpStateStore",
    "RedisOtpStateStore",
    "InMemoryOtpStateStore",
    # Ports
    "UserDirectory",
    "Notifier",
    "Clock",
    "SystemClock",
]
