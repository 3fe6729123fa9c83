"""
HTTP Middleware
===============
Starlette integration for the per-address limiter.
"""

from .ip_utils import is_trusted_proxy, resolve_client_ip
from .source_limit import SourceRateLimitMiddleware

__all__ = [
    "is_trusted_proxy",
    "resolve_client_ip",
    "SourceRateLimitMiddleware",
]
