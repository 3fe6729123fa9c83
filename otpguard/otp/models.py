"""
OTP Models
==========
Lifecycle state and result types for one-time verification codes.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Mapping, Optional


class Purpose(str, Enum):
    """What a verification code authorizes."""
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"


def _parse_instant(raw: Optional[str]) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        raise ValueError(f"Naive timestamp in OTP state: {raw}")
    return value


@dataclass(frozen=True)
class OtpState:
    """
    OTP lifecycle state for one identity.

    Immutable: every transition returns a new state.
    """
    code: Optional[str] = None
    purpose: Optional[Purpose] = None
    attempts: int = 0
    otp_expires_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None
    reset_token: Optional[str] = None
    reset_token_expires_at: Optional[datetime] = None

    @classmethod
    def empty(cls) -> "OtpState":
        return cls()

    # Transitions

    def start_otp(
        self,
        code: str,
        purpose: Purpose,
        now: datetime,
        ttl: timedelta,
        cooldown_until: datetime,
    ) -> "OtpState":
        """Issue a new code, resetting attempts and any reset token."""
        return replace(
            self,
            code=code,
            purpose=purpose,
            attempts=0,
            otp_expires_at=now + ttl,
            cooldown_until=cooldown_until,
            reset_token=None,
            reset_token_expires_at=None,
        )

    def increment_attempts(self) -> "OtpState":
        return replace(self, attempts=self.attempts + 1)

    def with_attempts(self, attempts: int) -> "OtpState":
        return replace(self, attempts=max(attempts, 0))

    def with_cooldown(self, cooldown_until: datetime) -> "OtpState":
        return replace(self, cooldown_until=cooldown_until)

    def clear_otp(self) -> "OtpState":
        return replace(self, code=None, purpose=None, attempts=0, otp_expires_at=None)

    def issue_reset_token(self, token_hash: str, expires_at: datetime) -> "OtpState":
        """Replace the verified code with a reset token."""
        return replace(
            self.clear_otp(),
            reset_token=token_hash,
            reset_token_expires_at=expires_at,
        )

    def clear_reset_token(self) -> "OtpState":
        return replace(self, reset_token=None, reset_token_expires_at=None)

    # Predicates

    @property
    def has_code(self) -> bool:
        return self.code is not None

    @property
    def has_reset_token(self) -> bool:
        return bool(self.reset_token) and self.reset_token_expires_at is not None

    @property
    def is_empty(self) -> bool:
        return self.code is None and not self.reset_token

    def is_code_expired(self, now: datetime) -> bool:
        return self.otp_expires_at is not None and self.otp_expires_at <= now

    def is_reset_token_expired(self, now: datetime) -> bool:
        return self.reset_token_expires_at is not None and self.reset_token_expires_at <= now

    def in_cooldown(self, now: datetime) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now

    def ttl_seconds(self, now: datetime) -> int:
        """Seconds until the latest of the record's instants, rounded up, or 0."""
        instants = [
            instant
            for instant in (self.otp_expires_at, self.cooldown_until, self.reset_token_expires_at)
            if instant is not None
        ]
        if not instants:
            return 0
        remaining = (max(instants) - now).total_seconds()
        return max(math.ceil(remaining), 0)

    # Serialization

    def to_mapping(self) -> Dict[str, str]:
        """Flat string mapping for a Redis hash. None fields are omitted."""
        data = {
            "code": self.code,
            "purpose": self.purpose.value if self.purpose else None,
            "attempts": str(self.attempts),
            "otp_expires_at": self.otp_expires_at.isoformat() if self.otp_expires_at else None,
            "cooldown_until": self.cooldown_until.isoformat() if self.cooldown_until else None,
            "reset_token": self.reset_token,
            "reset_token_expires_at": (
                self.reset_token_expires_at.isoformat() if self.reset_token_expires_at else None
            ),
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_mapping(cls, data: Mapping[str, str]) -> "OtpState":
        """
        Rebuild a state from its stored mapping.

        Raises:
            ValueError: If the mapping does not match the current schema
        """
        purpose = data.get("purpose")
        attempts = int(data.get("attempts") or 0)
        if attempts < 0:
            raise ValueError(f"Negative attempts in OTP state: {attempts}")
        return cls(
            code=data.get("code") or None,
            purpose=Purpose(purpose) if purpose else None,
            attempts=attempts,
            otp_expires_at=_parse_instant(data.get("otp_expires_at")),
            cooldown_until=_parse_instant(data.get("cooldown_until")),
            reset_token=data.get("reset_token") or None,
            reset_token_expires_at=_parse_instant(data.get("reset_token_expires_at")),
        )


@dataclass(frozen=True)
class Account:
    """Account view exposed by the user directory."""
    identity: str
    enabled: bool


@dataclass(frozen=True)
class GenerateResult:
    """Outcome of a code generation request.

    The shape is the same whether or not a code was actually sent.
    """
    cooldown_seconds: int
    cooldown_until: Optional[datetime] = None


@dataclass(frozen=True)
class VerifyResult:
    """Outcome of a successful verification."""
    purpose: Purpose
    reset_token: Optional[str] = None
