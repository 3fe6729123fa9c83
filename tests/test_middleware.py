"""
Tests for address resolution and the source rate limit middleware.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.testclient import TestClient
from starlette.types import Receive, Scope, Send

from otpguard.middleware import SourceRateLimitMiddleware, resolve_client_ip
from otpguard.rate_limit import InMemoryCounterStore, SourceRateLimiter

LIMITED = "/api/auth/verify-code"
TRUSTED = frozenset({"10.0.0.1"})


async def mock_app(scope: Scope, receive: Receive, send: Send):
    request = Request(scope, receive)
    response = JSONResponse({"status": "ok", "path": request.url.path})
    await response(scope, receive, send)


def create_client(max_requests=2, trusted_proxies=None, counters=None):
    limiter = SourceRateLimiter(
        counters or InMemoryCounterStore(),
        [LIMITED],
        window_seconds=600,
        max_requests=max_requests,
    )
    app = SourceRateLimitMiddleware(mock_app, limiter=limiter, trusted_proxies=trusted_proxies)
    return TestClient(app)


class TestResolveClientIp:
    """Tests for X-Forwarded-For handling."""

    def test_untrusted_peer_ignores_header(self):
        """Spoofed headers from direct clients are ignored."""
        assert resolve_client_ip("203.0.113.9", "1.1.1.1", TRUSTED) == "203.0.113.9"

    def test_trusted_peer_uses_first_entry(self):
        """The first forwarded address is the client."""
        assert resolve_client_ip("10.0.0.1", "198.51.100.7,10.0.0.2", TRUSTED) == "198.51.100.7"

    def test_whitespace_header_ignored(self):
        """Headers containing whitespace fall back to the peer."""
        assert resolve_client_ip("10.0.0.1", "198.51.100.7, 10.0.0.2", TRUSTED) == "10.0.0.1"

    @pytest.mark.parametrize("header", [None, "", "   "])
    def test_missing_header(self, header):
        """Without a header the peer is used."""
        assert resolve_client_ip("10.0.0.1", header, TRUSTED) == "10.0.0.1"

    def test_missing_peer(self):
        """No peer and no trust yields None."""
        assert resolve_client_ip(None, "1.1.1.1", TRUSTED) is None

    def test_empty_first_entry(self):
        """An empty first entry is not trusted."""
        assert resolve_client_ip("10.0.0.1", ",1.1.1.1", TRUSTED) == "10.0.0.1"


class TestSourceRateLimitMiddleware:
    """Tests for the Starlette middleware."""

    def test_allows_under_limit(self):
        """Requests under the cap reach the app."""
        client = create_client()

        for _ in range(2):
            response = client.post(LIMITED)
            assert response.status_code == 200
            assert response.json()["status"] == "ok"

    def test_blocks_over_limit(self):
        """The request over the cap gets a 429 with Retry-After."""
        client = create_client()
        client.post(LIMITED)
        client.post(LIMITED)

        response = client.post(LIMITED)

        assert response.status_code == 429
        body = response.json()
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        retry_after = int(response.headers["Retry-After"])
        assert 1 <= retry_after <= 600
        assert body["details"]["retry_after_seconds"] == retry_after

    def test_trailing_slash_counts(self):
        """Trailing-slash variants share the same counter."""
        client = create_client(max_requests=1)
        client.post(LIMITED)

        assert client.post(LIMITED + "/").status_code == 429

    def test_other_paths_untouched(self):
        """Unlisted paths are never limited."""
        client = create_client(max_requests=1)

        for _ in range(5):
            assert client.get("/health").status_code == 200

    def test_forwarded_clients_counted_separately(self):
        """Behind a trusted proxy each forwarded client has its own quota."""
        client = create_client(max_requests=1, trusted_proxies={"testclient"})

        assert client.post(LIMITED, headers={"X-Forwarded-For": "198.51.100.1"}).status_code == 200
        assert client.post(LIMITED, headers={"X-Forwarded-For": "198.51.100.2"}).status_code == 200
        assert client.post(LIMITED, headers={"X-Forwarded-For": "198.51.100.1"}).status_code == 429

    def test_spoofed_header_without_trust(self):
        """Rotating the header does not evade the limit from an untrusted peer."""
        client = create_client(max_requests=1)

        client.post(LIMITED, headers={"X-Forwarded-For": "198.51.100.1"})
        response = client.post(LIMITED, headers={"X-Forwarded-For": "198.51.100.2"})

        assert response.status_code == 429

    def test_backend_outage_fails_open(self):
        """Counter failures let requests through."""
        counters = MagicMock()
        counters.increment = AsyncMock(side_effect=RedisConnectionError("down"))
        client = create_client(max_requests=1, counters=counters)

        for _ in range(3):
            assert client.post(LIMITED).status_code == 200
