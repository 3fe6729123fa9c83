"""
OTP Guard
=========
One-time code lifecycle for registration and password reset, with
per-identity cooldowns and per-address throttling.
"""

__version__ = "0.1.0"

# Configuration
from otpguard.config import OtpGuardConfig

# Errors
from otpguard.exceptions import (
    OtpGuardError,
    RateLimited,
    NotFound,
    Expired,
    InvalidCode,
    TooManyAttempts,
    AlreadyVerified,
    DeliveryFailed,
    InvalidInput,
    BackendUnavailable,
)

# Identity
from otpguard.identity import normalize_identity, mask_identity, is_valid_password

# OTP
from otpguard.otp import (
    Purpose,
    OtpState,
    Account,
    GenerateResult,
    VerifyResult,
    CodeGenerator,
    CodeHasher,
    OtpStateStore,
    RedisOtpStateStore,
    InMemoryOtpStateStore,
    UserDirectory,
    Notifier,
    Clock,
    SystemClock,
)

# Rate Limiting
from otpguard.rate_limit import (
    CounterStore,
    RedisCounterStore,
    InMemoryCounterStore,
    IdentityRateLimiter,
    SourceRateLimiter,
    RateLimitInfo,
    RateLimitResult,
)

# Engine
from otpguard.otp.engine import OtpEngine

# Middleware
from otpguard.middleware import SourceRateLimitMiddleware, resolve_client_ip

# Logging
from otpguard.logging import setup_logging, get_logger

__all__ = [
    "__version__",
    # Configuration
    "OtpGuardConfig",
    # Errors
    "OtpGuardError",
    "RateLimited",
    "NotFound",
    "Expired",
    "InvalidCode",
    "TooManyAttempts",
    "AlreadyVerified",
    "DeliveryFailed",
    "InvalidInput",
    "BackendUnavailable",
    # Identity
    "normalize_identity",
    "mask_identity",
    "is_valid_password",
    # OTP
    "Purpose",
    "OtpState",
    "Account",
    "GenerateResult",
    "VerifyResult",
    "CodeGenerator",
    "CodeHasher",
    "OtpStateStore",
    "RedisOtpStateStore",
    "InMemoryOtpStateStore",
    "UserDirectory",
    "Notifier",
    "Clock",
    "SystemClock",
    # Rate Limiting
    "CounterStore",
    "RedisCounterStore",
    "InMemoryCounterStore",
    "IdentityRateLimiter",
    "SourceRateLimiter",
    "RateLimitInfo",
    "RateLimitResult",
    # Engine
    "OtpEngine",
    # Middleware
    "SourceRateLimitMiddleware",
    "resolve_client_ip",
    # Logging
    "setup_logging",
    "get_logger",
]
