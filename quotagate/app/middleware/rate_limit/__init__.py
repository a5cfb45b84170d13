"""Per-client request rate limiting.

This module provides an in-process token bucket keyed by client identity
and the helper that derives that identity from request headers.
"""

from typing import Mapping, Optional

from quotagate.app.core.config import settings

# Re-export models
from quotagate.app.middleware.rate_limit.models import (
    RateLimitResult,
    TokenBucket,
)

# Re-export backends
from quotagate.app.middleware.rate_limit.backends import InMemoryRateLimiter

__all__ = [
    "RateLimitResult",
    "TokenBucket",
    "InMemoryRateLimiter",
    "get_client_identity",
]


def get_client_identity(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """Get rate limit identity for a request.

    Uses the first address of X-Forwarded-For, then X-Real-IP, then the
    configured fallback identity.

    Args:
        headers: Request headers (case-insensitive mapping for real requests)
        fallback: Identity used when neither header is present
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return fallback or settings.rate_limit_fallback_identity
