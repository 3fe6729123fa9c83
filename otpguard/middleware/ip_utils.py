"""
IP Utility Functions
====================
Client address resolution behind trusted reverse proxies.
"""

from typing import AbstractSet, Optional


def is_trusted_proxy(ip: Optional[str], trusted_proxies: AbstractSet[str]) -> bool:
    """Check if the direct peer is a configured proxy."""
    if not ip or not ip.strip():
        return False
    return ip in trusted_proxies


def resolve_client_ip(
    peer: Optional[str],
    forwarded_for: Optional[str],
    trusted_proxies: AbstractSet[str],
) -> Optional[str]:
    """
    Resolve the address a request originated from.

    X-Forwarded-For is only honoured when the peer is a trusted proxy, and
    a header containing any whitespace is ignored as tampered.

    Args:
        peer: Address of the direct TCP peer
        forwarded_for: Raw X-Forwarded-For header, if any
        trusted_proxies: Exact proxy addresses to trust

    Returns:
        The first forwarded address, else the peer address
    """
    if is_trusted_proxy(peer, trusted_proxies) and forwarded_for and forwarded_for.strip():
        if not any(ch.isspace() for ch in forwarded_for):
            first = forwarded_for.split(",")[0]
            if first:
                return first
    return peer
