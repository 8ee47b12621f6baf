"""
Rate limiting utilities for API endpoints.

Provides in-memory, per-user rate limiting for the feedback endpoint so a
single user can't flood the AI provider.
"""
import math
import time
import logging
from collections import defaultdict
from typing import Callable, Dict, List

from fastapi import HTTPException

from ..config import settings

logger = logging.getLogger(__name__)


class InMemoryRateLimiter:
    """
    Simple in-memory rate limiter using sliding window.

    State is per process. With several workers each one enforces the limit
    independently.
    """

    def __init__(self, max_requests: int = 10, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        """
        Initialize rate limiter.

        Args:
            max_requests: Maximum number of requests allowed in window
            window_seconds: Time window in seconds
            clock: Time source (injectable for tests)
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[str, List[float]] = defaultdict(list)

    def _prune(self, key: str) -> List[float]:
        cutoff = self._clock() - self.window_seconds
        recent = [t for t in self._requests.get(key, []) if t > cutoff]
        if recent:
            self._requests[key] = recent
        else:
            self._requests.pop(key, None)
        return recent

    def check(self, key: str) -> bool:
        """
        Check if a request is allowed for the given key, recording it if so.

        Args:
            key: Unique identifier (the user's uid)

        Returns:
            True if request allowed, False if rate limited
        """
        recent = self._prune(key)
        if len(recent) >= self.max_requests:
            return False

        self._requests[key].append(self._clock())
        return True

    def reset(self, key: str) -> None:
        """Reset rate limit for a key."""
        self._requests.pop(key, None)

    def get_remaining(self, key: str) -> int:
        """Get remaining requests for a key."""
        return max(0, self.max_requests - len(self._prune(key)))

    def retry_after(self, key: str) -> int:
        """Seconds until the oldest request in the window expires."""
        recent = self._prune(key)
        if len(recent) < self.max_requests:
            return 0
        return max(1, math.ceil(recent[0] + self.window_seconds - self._clock()))


# Global rate limiter instance
feedback_rate_limiter = InMemoryRateLimiter(
    max_requests=settings.feedback_rate_limit_requests,
    window_seconds=settings.feedback_rate_limit_window_seconds,
)


def enforce_rate_limit(limiter: InMemoryRateLimiter, key: str) -> None:
    """
    Record a request for ``key`` or raise 429 with a Retry-After header.
    """
    if not limiter.check(key):
        retry_after = limiter.retry_after(key)
        logger.warning(f"Rate limit exceeded for {key}")
        raise HTTPException(
            status_code=429,
            detail="Too many feedback requests. Please try again in a minute.",
            headers={"Retry-After": str(retry_after)},
        )
