"""Client IP resolution from proxy headers."""

from __future__ import annotations

import ipaddress
from typing import Mapping

UNKNOWN_IP = "unknown"

# Most reliable sources first.
IP_HEADERS = (
    "x-real-ip",
    "x-forwarded-for",
    "cf-connecting-ip",  # Cloudflare
    "true-client-ip",  # Akamai and Cloudflare
)


def validate_ip_address(value: str | None) -> str | None:
    """Return `value` if it is a well-formed IPv4 or IPv6 address."""
    if not value:
        return None
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return None
    return value


def resolve_client_ip(headers: Mapping[str, str]) -> str:
    """Pick the client IP from the first present header.

    Comma-separated lists (as in `X-Forwarded-For`) contribute their first
    entry. A value that is not a valid address yields `"unknown"`.
    """

    for name in IP_HEADERS:
        value = headers.get(name)
        if value:
            candidate = value.split(",")[0].strip()
            return validate_ip_address(candidate) or UNKNOWN_IP
    return UNKNOWN_IP
