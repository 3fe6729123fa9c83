"""
OTP Ports
=========
Interfaces of the collaborators the OTP engine depends on.

Account persistence and email delivery live outside this package; the
host application provides implementations of these protocols.
"""

from datetime import datetime, timezone
from typing import Optional, Protocol

from .models import Account, Purpose


class UserDirectory(Protocol):
    """Lookup and activation of accounts keyed by identity."""

    async def find_by_identity(self, identity: str) -> Optional[Account]:
        """Return the account for a normalized identity, or None."""
        ...

    async def activate(self, identity: str) -> bool:
        """
        Enable the account.

        Returns:
            True if the account was activated, False if it already was
        """
        ...

    async def update_password(self, identity: str, new_password: str) -> None:
        """Store a new password (hashing is the directory's concern)."""
        ...


class Notifier(Protocol):
    """Delivers plaintext codes to the identity's mailbox."""

    async def send_code(self, identity: str, code: str, purpose: Purpose) -> bool:
        """
        Send a code.

        Returns:
            True if the message was accepted for delivery
        """
        ...


class Clock(Protocol):
    """Source of the current instant."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
