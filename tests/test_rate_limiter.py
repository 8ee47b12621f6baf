"""Tests for the in-memory rate limiter."""
import pytest
from fastapi import HTTPException

from interview_feedback.utils.rate_limiter import InMemoryRateLimiter, enforce_rate_limit


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestInMemoryRateLimiter:
    """Sliding window per key."""

    def test_blocks_after_max_requests(self):
        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60, clock=FakeClock())

        assert limiter.check("u1")
        assert limiter.check("u1")
        assert not limiter.check("u1")
        assert limiter.get_remaining("u1") == 0

    def test_keys_are_independent(self):
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

        assert limiter.check("u1")
        assert limiter.check("u2")

    def test_window_slides(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        limiter.check("u1")

        clock.now += 30
        assert limiter.retry_after("u1") == 30
        assert not limiter.check("u1")

        clock.now += 31
        assert limiter.check("u1")

    def test_reset(self):
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
        limiter.check("u1")

        limiter.reset("u1")

        assert limiter.get_remaining("u1") == 1

    def test_enforce_raises_429_with_retry_after(self):
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
        enforce_rate_limit(limiter, "u1")

        with pytest.raises(HTTPException) as exc_info:
            enforce_rate_limit(limiter, "u1")

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers == {"Retry-After": "60"}
