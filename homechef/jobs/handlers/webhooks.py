"""Signed webhook POST for a single delivery attempt."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from homechef.core import signing
from homechef.jobs.utils import safe_url

logger = logging.getLogger(__name__)

USER_AGENT = "HomeChef-Webhooks/1.0"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one POST; status_code is None on transport errors."""

    ok: bool
    status_code: int | None = None
    body: str | None = None
    error: str | None = None


def encode_payload(payload: dict[str, Any]) -> bytes:
    """Compact JSON; the signature covers exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), default=str).encode()


def build_headers(secret: str, body: bytes, event_type: str, delivery_id: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        signing.EVENT_HEADER: event_type,
        signing.DELIVERY_HEADER: delivery_id,
        signing.SIGNATURE_HEADER: signing.sign(secret, body),
    }


async def send_webhook(
    client: httpx.AsyncClient,
    url: str,
    secret: str,
    payload: dict[str, Any],
    event_type: str,
    delivery_id: str,
    timeout: float,
) -> AttemptOutcome:
    """POST the signed payload; never raises for HTTP or transport failures."""
    body = encode_payload(payload)
    headers = build_headers(secret, body, event_type, delivery_id)
    try:
        response = await client.post(url, content=body, headers=headers, timeout=timeout)
    except httpx.TimeoutException:
        logger.warning("Webhook delivery %s timed out: %s", delivery_id, safe_url(url))
        return AttemptOutcome(ok=False, error=f"timeout after {timeout:g}s")
    except httpx.HTTPError as exc:
        logger.warning(
            "Webhook delivery %s failed: %s (%s)",
            delivery_id,
            safe_url(url),
            type(exc).__name__,
        )
        return AttemptOutcome(ok=False, error=f"{type(exc).__name__}: {exc}")

    if 200 <= response.status_code < 300:
        logger.info("Webhook delivery %s succeeded: %s", delivery_id, safe_url(url))
        return AttemptOutcome(ok=True, status_code=response.status_code, body=response.text)

    logger.warning(
        "Webhook delivery %s got HTTP %s: %s", delivery_id, response.status_code, safe_url(url)
    )
    return AttemptOutcome(
        ok=False,
        status_code=response.status_code,
        body=response.text,
        error=f"HTTP {response.status_code}",
    )
