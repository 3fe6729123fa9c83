"""
Source Rate Limit Middleware
============================
Starlette middleware applying the per-address limiter to sensitive paths.
"""

from typing import AbstractSet, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from otpguard.exceptions import RateLimited
from otpguard.rate_limit.source import SourceRateLimiter
from .ip_utils import resolve_client_ip


class SourceRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Throttles OTP endpoints per client address.

    Usage:
        app.add_middleware(
            SourceRateLimitMiddleware,
            limiter=SourceRateLimiter.from_config(config, RedisCounterStore(redis_client)),
            trusted_proxies=config.trusted_proxies,
        )
    """

    def __init__(
        self,
        app,
        limiter: SourceRateLimiter,
        trusted_proxies: Optional[AbstractSet[str]] = None,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.trusted_proxies = frozenset(trusted_proxies or ())

    def _get_client_ip(self, request: Request) -> Optional[str]:
        peer = request.client.host if request.client else None
        return resolve_client_ip(peer, request.headers.get("X-Forwarded-For"), self.trusted_proxies)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not self.limiter.is_limited(path):
            return await call_next(request)

        try:
            await self.limiter.check(path, self._get_client_ip(request))
        except RateLimited as e:
            return self._limited_response(e)

        return await call_next(request)

    def _limited_response(self, error: RateLimited) -> JSONResponse:
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_dict(),
            headers={"Retry-After": str(error.retry_after_seconds)},
        )
