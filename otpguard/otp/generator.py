"""
Code Generator
==============
Cryptographically secure numeric codes and opaque reset tokens.
"""

import hashlib
import hmac
import secrets

from otpguard.config import MAX_CODE_LENGTH, MIN_CODE_LENGTH

RESET_TOKEN_BYTES = 32


class CodeGenerator:
    """Generates fixed-width numeric one-time codes."""

    def __init__(self, length: int = 6):
        # Out-of-range lengths are clamped, never rejected
        self.length = max(MIN_CODE_LENGTH, min(length, MAX_CODE_LENGTH))

    @property
    def lower_bound(self) -> int:
        return 10 ** (self.length - 1)

    @property
    def upper_bound(self) -> int:
        return 10 ** self.length - 1

    def generate(self) -> str:
        """
        Generate a code uniformly distributed over [10^(n-1), 10^n - 1].

        Returns:
            Numeric code of exactly ``length`` digits
        """
        span = self.upper_bound - self.lower_bound + 1
        return str(self.lower_bound + secrets.randbelow(span))


def generate_reset_token() -> str:
    """Generate an unguessable URL-safe reset token (256 bits)."""
    return secrets.token_urlsafe(RESET_TOKEN_BYTES)


def hash_reset_token(token: str) -> str:
    """
    Hash a reset token for storage using SHA-256.

    Only the digest is persisted; the plaintext goes to the caller once.
    """
    return hashlib.sha256(token.encode()).hexdigest()


def verify_reset_token(token: str, stored_hash: str) -> bool:
    """Compare a presented token with its stored digest in constant time."""
    if not token or not stored_hash:
        return False
    return hmac.compare_digest(hash_reset_token(token), stored_hash)
