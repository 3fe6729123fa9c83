"""
Identity Utilities
==================
Normalization and masking of the email identities used as state keys.
"""

import re

PASSWORD_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$"
)


def normalize_identity(email: str) -> str:
    """
    Normalize an email into the identity key.

    Args:
        email: Raw email as submitted

    Returns:
        Trimmed, lower-cased email ("" for None)
    """
    if email is None:
        return ""
    return email.strip().lower()


def mask_identity(identity: str) -> str:
    """Mask an identity for logs: a****@example.com"""
    if not identity:
        return ""
    if "@" not in identity:
        return identity[:1] + "****"
    local, domain = identity.rsplit("@", 1)
    return f"{local[:1]}****@{domain}"


def is_valid_password(password: str) -> bool:
    """Check a new password against the strength policy."""
    if not password or len(password) < 8:
        return False
    return PASSWORD_PATTERN.match(password) is not None
