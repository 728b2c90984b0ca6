"""Rate limiting configuration for the order API."""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from homechef.core.config import settings

# The hub is single-instance, so limits are kept in process memory.
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
WRITE_LIMIT = f"{max(settings.RATE_LIMIT_API, 1)}/minute"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    default_limits=[],
    enabled=not IS_TESTING and settings.RATE_LIMIT_API > 0,
)
