"""
OTP Guard Configuration
=======================
Runtime settings for code issuance, verification and rate limiting.
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

import structlog

logger = structlog.get_logger(__name__)

MIN_CODE_LENGTH = 4
MAX_CODE_LENGTH = 8

DEFAULT_LIMITED_PATHS = (
    "/api/auth/resend-verification-code",
    "/api/auth/verify-code",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
)

HASH_ALGORITHMS = ("bcrypt", "argon2")


def parse_csv(raw: Optional[str]) -> FrozenSet[str]:
    """Split a comma separated setting into a set of trimmed, non-empty entries."""
    if not raw or not raw.strip():
        return frozenset()
    return frozenset(entry.strip() for entry in raw.split(",") if entry.strip())


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning("Invalid integer setting, using default", setting=name, value=value, default=default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class OtpGuardConfig:
    """Configuration for the OTP lifecycle and its rate limiters."""
    code_length: int = 6
    otp_ttl_seconds: int = 600  # 10 minutes
    resend_cooldown_seconds: int = 60
    escalated_cooldown_seconds: int = 300  # after 3+ failed attempts
    failure_window_seconds: int = 3600
    max_attempts: int = 5
    reset_token_ttl_seconds: int = 600
    reissue_active_code: bool = True
    hash_algorithm: str = "bcrypt"
    bcrypt_rounds: int = 10
    ip_window_seconds: int = 600
    ip_max_requests: int = 10
    limited_paths: FrozenSet[str] = field(default_factory=lambda: frozenset(DEFAULT_LIMITED_PATHS))
    trusted_proxies: FrozenSet[str] = field(default_factory=frozenset)
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "otp"

    def __post_init__(self):
        self.code_length = max(MIN_CODE_LENGTH, min(self.code_length, MAX_CODE_LENGTH))
        self.otp_ttl_seconds = max(self.otp_ttl_seconds, 1)
        self.resend_cooldown_seconds = max(self.resend_cooldown_seconds, 1)
        self.escalated_cooldown_seconds = max(self.escalated_cooldown_seconds, self.resend_cooldown_seconds)
        self.failure_window_seconds = max(self.failure_window_seconds, 1)
        self.max_attempts = max(self.max_attempts, 1)
        # A reset token never outlives the code that authorized it
        self.reset_token_ttl_seconds = max(1, min(self.reset_token_ttl_seconds, self.otp_ttl_seconds))
        self.bcrypt_rounds = max(4, min(self.bcrypt_rounds, 31))
        self.ip_window_seconds = max(self.ip_window_seconds, 1)
        self.ip_max_requests = max(self.ip_max_requests, 1)
        self.limited_paths = frozenset(self.limited_paths)
        self.trusted_proxies = frozenset(self.trusted_proxies)
        self.hash_algorithm = self.hash_algorithm.strip().lower()
        if self.hash_algorithm not in HASH_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {self.hash_algorithm}")

    @classmethod
    def from_env(cls) -> "OtpGuardConfig":
        """Build a configuration from ``OTP_*`` environment variables."""
        defaults = cls()
        limited_paths = os.environ.get("OTP_LIMITED_PATHS")
        return cls(
            code_length=_env_int("OTP_CODE_LENGTH", defaults.code_length),
            otp_ttl_seconds=_env_int("OTP_TTL_SECONDS", defaults.otp_ttl_seconds),
            resend_cooldown_seconds=_env_int("OTP_RESEND_COOLDOWN_SECONDS", defaults.resend_cooldown_seconds),
            escalated_cooldown_seconds=_env_int(
                "OTP_ESCALATED_COOLDOWN_SECONDS", defaults.escalated_cooldown_seconds
            ),
            failure_window_seconds=_env_int("OTP_FAILURE_WINDOW_SECONDS", defaults.failure_window_seconds),
            max_attempts=_env_int("OTP_MAX_ATTEMPTS", defaults.max_attempts),
            reset_token_ttl_seconds=_env_int("OTP_RESET_TOKEN_TTL_SECONDS", defaults.reset_token_ttl_seconds),
            reissue_active_code=_env_bool("OTP_REISSUE_ACTIVE_CODE", defaults.reissue_active_code),
            hash_algorithm=os.environ.get("OTP_HASH_ALGORITHM", defaults.hash_algorithm),
            bcrypt_rounds=_env_int("OTP_BCRYPT_ROUNDS", defaults.bcrypt_rounds),
            ip_window_seconds=_env_int("OTP_IP_WINDOW_SECONDS", defaults.ip_window_seconds),
            ip_max_requests=_env_int("OTP_IP_MAX_REQUESTS", defaults.ip_max_requests),
            limited_paths=parse_csv(limited_paths) if limited_paths is not None else defaults.limited_paths,
            trusted_proxies=parse_csv(os.environ.get("OTP_TRUSTED_PROXIES")),
            redis_url=os.environ.get("REDIS_URL", defaults.redis_url),
            key_prefix=os.environ.get("OTP_KEY_PREFIX", defaults.key_prefix),
        )
