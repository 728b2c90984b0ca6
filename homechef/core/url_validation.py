"""URL validation for subscriber-supplied webhook targets."""

from __future__ import annotations

import ipaddress
from urllib.parse import urlsplit, urlunsplit

from homechef.core.config import settings

ALLOWED_SCHEMES = {"http", "https"}


def _is_ip_global(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    # Rejects loopback, link-local, RFC1918, multicast, etc.
    return ip.is_global


def validate_outbound_webhook_url(url: str, *, block_private_ips: bool | None = None) -> str:
    """
    Validate a webhook target URL.

    - Absolute http:// or https:// with a host.
    - No credentials and no fragment.
    - With block_private_ips (default WEBHOOK_BLOCK_PRIVATE_IPS), IP-literal
      hosts must be globally routable. Hostnames are not resolved.

    Returns a normalized URL (lowercased scheme, no fragment) or raises ValueError.
    """
    if block_private_ips is None:
        block_private_ips = settings.WEBHOOK_BLOCK_PRIVATE_IPS

    candidate = (url or "").strip()
    if not candidate:
        raise ValueError("Webhook URL is required")

    parts = urlsplit(candidate)
    scheme = (parts.scheme or "").lower()
    if scheme not in ALLOWED_SCHEMES:
        raise ValueError("Webhook URL must start with http:// or https://")

    if not parts.netloc:
        raise ValueError("Webhook URL must include a host")

    if parts.username or parts.password:
        raise ValueError("Webhook URL must not include credentials")

    host = (parts.hostname or "").strip().lower().rstrip(".")
    if not host:
        raise ValueError("Webhook URL must include a host")

    if parts.fragment:
        raise ValueError("Webhook URL must not include a fragment")

    try:
        parts.port
    except ValueError as exc:
        raise ValueError("Webhook URL port is invalid") from exc

    if block_private_ips:
        try:
            ip = ipaddress.ip_address(host)
        except ValueError:
            ip = None
        if ip is not None and not _is_ip_global(ip):
            raise ValueError("Webhook URL host is not allowed")

    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, ""))
