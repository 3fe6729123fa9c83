"""
OTP Guard Exceptions
====================
Error taxonomy raised by the OTP engine and rate limiters.

Every failure that leaves the engine is one of these classes. Store and
transport errors are translated before they reach the caller.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class OtpGuardError(Exception):
    """Base class for all OTP guard errors."""

    code: str = "OPERATION_FAILED"
    status_code: int = 400
    default_message: str = "Operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Payload safe to return to the caller."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class RateLimited(OtpGuardError):
    """Raised when a cooldown or address throttle is active."""

    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    default_message = "Too many requests"

    def __init__(
        self,
        retry_after_seconds: int,
        cooldown_until: Optional[datetime] = None,
        message: Optional[str] = None,
    ):
        self.retry_after_seconds = retry_after_seconds
        self.cooldown_until = cooldown_until
        details: Dict[str, Any] = {"retry_after_seconds": retry_after_seconds}
        if cooldown_until is not None:
            details["cooldown_until"] = cooldown_until.isoformat()
        super().__init__(message, details)


class NotFound(OtpGuardError):
    """No active code or reset token for the identity."""

    code = "VERIFICATION_CODE_NOT_FOUND"
    status_code = 404
    default_message = "No active verification code"


class Expired(OtpGuardError):
    """The code or reset token has expired."""

    code = "VERIFICATION_CODE_EXPIRED"
    status_code = 410
    default_message = "Verification code expired"


class InvalidCode(OtpGuardError):
    """The submitted code or token does not match."""

    code = "VERIFICATION_CODE_INVALID"
    status_code = 400
    default_message = "Invalid verification code"

    def __init__(self, attempts_remaining: Optional[int] = None, message: Optional[str] = None):
        self.attempts_remaining = attempts_remaining
        details = {"attempts_remaining": attempts_remaining} if attempts_remaining is not None else None
        super().__init__(message, details)


class TooManyAttempts(OtpGuardError):
    """Attempts for the current code are exhausted."""

    code = "TOO_MANY_VERIFICATION_ATTEMPTS"
    status_code = 429
    default_message = "Too many verification attempts"


class AlreadyVerified(OtpGuardError):
    """The account is already activated."""

    code = "ALREADY_VERIFIED"
    status_code = 409
    default_message = "Account already verified"


class DeliveryFailed(OtpGuardError):
    """The code could not be delivered; the issued code was rolled back."""

    code = "EMAIL_SEND_ERROR"
    status_code = 503
    default_message = "Could not deliver verification code"


class InvalidInput(OtpGuardError):
    """Malformed or missing input."""

    code = "INVALID_PARAMETER"
    status_code = 400
    default_message = "Invalid input"


class BackendUnavailable(OtpGuardError):
    """The state store could not be reached."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 503
    default_message = "Service temporarily unavailable"
