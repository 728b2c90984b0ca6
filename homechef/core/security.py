"""Bearer token verification (HS256 JWT issued by the auth service)."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from homechef.core.config import settings


def create_access_token(user_id: UUID, role: str, expires_hours: int | None = None) -> str:
    """
    Create a signed bearer token.

    Token issuance belongs to the auth service; this exists for operators and
    tests that need a token the API will accept.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=expires_hours or settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a bearer token.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore
