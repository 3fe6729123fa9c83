"""
Source Address Limiter
======================
Fixed-window request cap per client address on sensitive paths.
"""

from typing import FrozenSet, Iterable, Optional

import structlog
from redis.exceptions import RedisError

from otpguard.config import OtpGuardConfig
from otpguard.exceptions import RateLimited
from .counters import CounterStore
from .models import RateLimitInfo

logger = structlog.get_logger(__name__)


def _path_variants(paths: Iterable[str]) -> FrozenSet[str]:
    variants = set()
    for path in paths:
        path = path.strip()
        if not path:
            continue
        trimmed = path.rstrip("/") or "/"
        variants.add(trimmed)
        variants.add(trimmed if trimmed.endswith("/") else trimmed + "/")
    return frozenset(variants)


class SourceRateLimiter:
    """
    Caps requests per source address within a window.

    Only requests to the configured paths are counted. The window starts
    with the first counted request from an address.
    """

    def __init__(
        self,
        counters: CounterStore,
        limited_paths: Iterable[str],
        window_seconds: int = 600,
        max_requests: int = 10,
        prefix: str = "otp",
    ):
        """
        Args:
            counters: Counter backend
            limited_paths: Paths to throttle (trailing slash optional)
            window_seconds: Window length
            max_requests: Requests allowed per address per window
            prefix: Key namespace
        """
        self.counters = counters
        self.limited_paths = _path_variants(limited_paths)
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.prefix = prefix

    @classmethod
    def from_config(cls, config: OtpGuardConfig, counters: CounterStore) -> "SourceRateLimiter":
        return cls(
            counters,
            config.limited_paths,
            window_seconds=config.ip_window_seconds,
            max_requests=config.ip_max_requests,
            prefix=config.key_prefix,
        )

    def get_key(self, address: str) -> str:
        return f"{self.prefix}:ip:{address}"

    def is_limited(self, path: str) -> bool:
        return bool(path) and path in self.limited_paths

    async def check(self, path: str, address: Optional[str]) -> Optional[RateLimitInfo]:
        """
        Count a request and enforce the cap.

        Args:
            path: Request path
            address: Resolved client address

        Returns:
            RateLimitInfo for counted requests, None when the request is
            not subject to the limit

        Raises:
            RateLimited: If the address exceeded the cap in this window
        """
        if not self.is_limited(path) or not address or not address.strip():
            return None

        try:
            count, ttl = await self.counters.increment(self.get_key(address), self.window_seconds)
        except RedisError as e:
            logger.error("Source rate limit check failed", path=path, error=str(e))
            # Fail open; the identity cooldown still applies
            return RateLimitInfo(
                allowed=True,
                remaining=self.max_requests,
                limit=self.max_requests,
                degraded=True,
            )

        if count > self.max_requests:
            retry_after = ttl or self.window_seconds
            logger.warning(
                "Source rate limit exceeded",
                address=address,
                path=path,
                count=count,
                retry_after=retry_after,
            )
            raise RateLimited(retry_after)

        return RateLimitInfo(
            allowed=True,
            remaining=self.max_requests - count,
            limit=self.max_requests,
        )
