"""Tests for the per-client token bucket rate limiter."""

import random
import threading

import pytest

from quotagate.app.exceptions import RateLimitedError
from quotagate.app.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimitResult,
    TokenBucket,
    get_client_identity,
)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return InMemoryRateLimiter(requests_per_minute=60, refill_interval_ms=60_000, clock=clock)


class TestTokenBucket:
    """Tests for the token bucket algorithm."""

    def test_first_request_creates_full_bucket(self, limiter):
        result = limiter.consume("10.0.0.1")
        assert result.allowed is True
        assert result.limit == 60
        assert result.remaining == 59
        assert limiter.peek("10.0.0.1").tokens == 59

    def test_burst_of_capacity_plus_one(self, limiter):
        """61 calls in the same millisecond: 60 accepted, the 61st rejected."""
        results = [limiter.consume("10.0.0.1") for _ in range(61)]

        assert sum(r.allowed for r in results) == 60
        assert all(r.allowed for r in results[:60])
        assert results[60].allowed is False
        assert results[60].remaining == 0
        assert results[60].retry_after >= 1

    def test_rejection_does_not_go_negative(self, limiter):
        for _ in range(100):
            limiter.consume("10.0.0.1")
        assert limiter.peek("10.0.0.1").tokens == 0

    def test_refill_is_clamped_to_capacity(self, limiter, clock):
        for _ in range(10):
            limiter.consume("10.0.0.1")

        clock.advance(10 * 60_000)
        result = limiter.consume("10.0.0.1")

        # Bucket was clamped to 60 before this call took one token.
        assert result.remaining == 59

    def test_full_refill_after_interval(self, limiter, clock):
        for _ in range(60):
            limiter.consume("10.0.0.1")
        assert limiter.consume("10.0.0.1").allowed is False

        clock.advance(60_000)
        result = limiter.consume("10.0.0.1")
        assert result.allowed is True
        assert result.remaining == 59

    def test_partial_refill_is_floored(self, limiter, clock):
        for _ in range(60):
            limiter.consume("10.0.0.1")

        # 1.5 seconds at 1 token/second refills exactly one token.
        clock.advance(1_500)
        assert limiter.consume("10.0.0.1").allowed is True
        assert limiter.consume("10.0.0.1").allowed is False

    def test_sub_token_elapsed_does_not_reset_refill_clock(self, limiter, clock):
        for _ in range(60):
            limiter.consume("10.0.0.1")

        clock.advance(600)
        assert limiter.consume("10.0.0.1").allowed is False
        clock.advance(600)
        # 1.2 seconds since the last refill in total: one token available.
        assert limiter.consume("10.0.0.1").allowed is True

    def test_retry_after_reflects_refill_rate(self, limiter):
        for _ in range(60):
            limiter.consume("10.0.0.1")
        result = limiter.consume("10.0.0.1")
        assert result.retry_after == 1

    def test_per_call_capacity(self, limiter):
        results = [limiter.consume("10.0.0.9", capacity=30) for _ in range(31)]
        assert sum(r.allowed for r in results) == 30
        assert results[-1].limit == 30

    def test_different_identities_independent(self, limiter):
        for _ in range(60):
            limiter.consume("key1")
        assert limiter.consume("key1").allowed is False
        assert limiter.consume("key2").allowed is True

    def test_tokens_stay_within_bounds_for_random_schedule(self, clock):
        limiter = InMemoryRateLimiter(requests_per_minute=5, refill_interval_ms=1_000, clock=clock)
        rng = random.Random(42)
        for _ in range(500):
            clock.advance(rng.choice([0, 0, 0, 50, 199, 400, 5_000]))
            limiter.consume("client")
            bucket = limiter.peek("client")
            assert 0 <= bucket.tokens <= 5

    def test_buckets_are_never_evicted(self, limiter):
        for i in range(500):
            limiter.consume(f"10.0.{i // 256}.{i % 256}")
        assert len(limiter) == 500


class TestCheck:
    """Tests for the raising form of the limiter."""

    def test_check_returns_result_when_allowed(self, limiter):
        result = limiter.check("10.0.0.1")
        assert isinstance(result, RateLimitResult)
        assert result.allowed is True

    def test_check_raises_when_empty(self, limiter):
        for _ in range(60):
            limiter.check("10.0.0.1")
        with pytest.raises(RateLimitedError) as exc_info:
            limiter.check("10.0.0.1")
        assert exc_info.value.code == "RATE_LIMITED"
        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after >= 1


class TestConcurrency:
    """Tests for per-identity atomicity under threads."""

    def test_no_lost_decrements_across_threads(self, clock):
        limiter = InMemoryRateLimiter(requests_per_minute=1_000, refill_interval_ms=60_000, clock=clock)
        allowed = []
        lock = threading.Lock()

        def worker():
            local = 0
            for _ in range(250):
                if limiter.consume("shared").allowed:
                    local += 1
            with lock:
                allowed.append(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(allowed) == 1_000
        assert limiter.peek("shared").tokens == 0


class TestClientIdentity:
    """Tests for deriving the rate limit identity from headers."""

    def test_first_forwarded_address(self):
        headers = {"x-forwarded-for": "10.0.0.1, 192.168.1.1"}
        assert get_client_identity(headers) == "10.0.0.1"

    def test_real_ip_when_no_forwarded_for(self):
        assert get_client_identity({"x-real-ip": "172.16.0.5"}) == "172.16.0.5"

    def test_forwarded_for_wins_over_real_ip(self):
        headers = {"x-forwarded-for": "10.0.0.1", "x-real-ip": "172.16.0.5"}
        assert get_client_identity(headers) == "10.0.0.1"

    def test_default_identity(self):
        assert get_client_identity({}) == "127.0.0.1"

    def test_custom_fallback(self):
        assert get_client_identity({}, fallback="unknown") == "unknown"


def test_token_bucket_repr_hides_lock():
    bucket = TokenBucket(tokens=3, last_refill=0.0)
    assert "lock" not in repr(bucket)
