"""HMAC-SHA256 request body signing for webhooks and collaborator callbacks."""

import hashlib
import hmac
import secrets

SIGNATURE_HEADER = "X-HomeChef-Signature"
EVENT_HEADER = "X-HomeChef-Event"
DELIVERY_HEADER = "X-HomeChef-Delivery"

SECRET_PREFIX = "whsec_"


def sign(secret: str, body: bytes) -> str:
    """Return the hex HMAC-SHA256 of body keyed by secret."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of a hex signature against body."""
    if not secret or not signature:
        return False
    expected = sign(secret, body)
    return hmac.compare_digest(expected, signature.strip().lower())


def generate_secret() -> str:
    """Generate a 256-bit shared secret for a webhook endpoint."""
    return f"{SECRET_PREFIX}{secrets.token_hex(32)}"
