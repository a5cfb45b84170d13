"""In-memory token bucket rate limiter."""

import math
import threading
import time
from typing import Callable, Dict, Optional

from quotagate.app.core.config import settings
from quotagate.app.core.logging import get_log_context, get_logger
from quotagate.app.exceptions import RateLimitedError
from quotagate.app.middleware.rate_limit.models import RateLimitResult, TokenBucket

logger = get_logger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class InMemoryRateLimiter:
    """In-memory token bucket keyed by client identity.

    Buckets are created lazily (full) on the first request from an identity
    and refilled lazily on each call. Each identity has its own lock, so
    concurrent requests from one client never lose a decrement while
    different clients do not contend.

    Suitable for single-instance deployments only. Buckets live for the
    process lifetime and are never evicted, so the map grows with the number
    of distinct identities seen.
    """

    def __init__(
        self,
        requests_per_minute: Optional[int] = None,
        refill_interval_ms: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Default bucket capacity
            refill_interval_ms: Time for an empty bucket to refill completely
            clock: Millisecond clock, defaults to a monotonic clock
        """
        self.requests_per_minute = requests_per_minute or settings.rate_limit_requests_per_minute
        self.refill_interval_ms = refill_interval_ms or settings.rate_limit_refill_interval_ms
        self._clock = clock or _monotonic_ms
        self._buckets: Dict[str, TokenBucket] = {}
        self._buckets_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def _get_bucket(self, identity: str, capacity: int, now: float) -> TokenBucket:
        bucket = self._buckets.get(identity)
        if bucket is None:
            with self._buckets_lock:
                bucket = self._buckets.get(identity)
                if bucket is None:
                    bucket = TokenBucket(tokens=capacity, last_refill=now)
                    self._buckets[identity] = bucket
        return bucket

    def consume(
        self,
        identity: str,
        capacity: Optional[int] = None,
        refill_interval_ms: Optional[int] = None,
    ) -> RateLimitResult:
        """Take one token from ``identity``'s bucket.

        Args:
            identity: Client identity (usually the client IP)
            capacity: Bucket size for this call site
            refill_interval_ms: Time for an empty bucket to refill completely

        Returns:
            RateLimitResult with allowed status and metadata
        """
        capacity = capacity or self.requests_per_minute
        interval = refill_interval_ms or self.refill_interval_ms

        now = self._clock()
        bucket = self._get_bucket(identity, capacity, now)

        with bucket.lock:
            now = self._clock()
            elapsed = now - bucket.last_refill
            refill = math.floor(elapsed / interval * capacity)
            if refill > 0:
                bucket.tokens = min(capacity, bucket.tokens + refill)
                bucket.last_refill = now

            if bucket.tokens <= 0:
                # One token arrives every interval / capacity milliseconds.
                wait_ms = interval / capacity - (now - bucket.last_refill)
                return RateLimitResult(
                    allowed=False,
                    limit=capacity,
                    remaining=0,
                    retry_after=max(1, math.ceil(wait_ms / 1000)),
                )

            bucket.tokens = min(bucket.tokens, capacity) - 1
            return RateLimitResult(
                allowed=True,
                limit=capacity,
                remaining=bucket.tokens,
            )

    def check(
        self,
        identity: str,
        capacity: Optional[int] = None,
        refill_interval_ms: Optional[int] = None,
    ) -> RateLimitResult:
        """Consume a token or raise RateLimitedError."""
        result = self.consume(identity, capacity, refill_interval_ms)
        if not result.allowed:
            logger.info(
                "Rate limit exceeded",
                extra=get_log_context(client_identity=identity, retry_after=result.retry_after),
            )
            raise RateLimitedError(retry_after=result.retry_after or 1)
        return result

    def peek(self, identity: str) -> Optional[TokenBucket]:
        """Return the bucket for ``identity`` without touching it."""
        return self._buckets.get(identity)
