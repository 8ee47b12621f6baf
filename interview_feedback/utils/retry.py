"""
Retry policy with exponential backoff for async I/O calls.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


def _never(error: BaseException) -> bool:
    return False


@dataclass
class RetryPolicy:
    """
    How often and how long to wait before retrying a failed call.

    With the defaults a call is attempted once and retried up to three
    times, waiting 1s, 2s and 4s between attempts.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying)
        base_delay_seconds: Delay before the first retry
        multiplier: Factor applied to the delay for each further retry
        is_retryable: Predicate deciding whether an error is transient
    """
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    is_retryable: Callable[[BaseException], bool] = _never

    def delay_for(self, retry_number: int) -> float:
        """Delay in seconds before retry number ``retry_number`` (1-based)."""
        return self.base_delay_seconds * (self.multiplier ** (retry_number - 1))

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        description: str = "operation",
    ) -> Any:
        """
        Await ``operation()`` until it succeeds or retries run out.

        Non-retryable errors propagate immediately. When the last retry
        fails, the last error propagates.
        """
        retries = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                retries += 1
                if retries > self.max_retries:
                    logger.error(f"{description} failed after {self.max_retries} retries: {e}")
                    raise
                delay = self.delay_for(retries)
                logger.warning(
                    f"{description} failed ({type(e).__name__}: {e}), "
                    f"retrying in {delay:.1f}s ({retries}/{self.max_retries})"
                )
                await sleep(delay)
