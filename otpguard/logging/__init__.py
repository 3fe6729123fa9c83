"""
OTP Guard Logging
=================
Structured logging setup shared by every otpguard component.
"""

from .setup import (
    setup_logging,
    get_logger,
    service_name_var,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "service_name_var",
]
