"""Rate limiting data models.

This module contains dataclasses for rate limit state and results.
"""

import threading
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    retry_after: Optional[int] = None


@dataclass
class TokenBucket:
    """Token bucket state for one client identity.

    ``last_refill`` is in milliseconds. ``lock`` serialises the
    read-modify-write cycle for this identity only.
    """
    tokens: int
    last_refill: float
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
