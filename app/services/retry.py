"""Retry policy for provider calls."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from app.services.errors import ErrorType, SyncError, error_from_exception

logger = logging.getLogger(__name__)

RETRYABLE_TYPES = frozenset({
    ErrorType.SERVER_ERROR,
    ErrorType.NETWORK_ERROR,
    ErrorType.RATE_LIMITED,
})


@dataclass(frozen=True)
class RetryPolicy:
    """
    Decides whether and when a failed provider call is attempted again.

    max_attempts counts the first call, so 3 means up to two retries.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    rate_limit_default_wait: float = 60.0
    rate_limit_max_wait: float = 300.0
    jitter: float = 0.5

    def should_retry(self, error: SyncError, attempt: int) -> bool:
        if error.error_type not in RETRYABLE_TYPES:
            return False
        if attempt >= self.max_attempts:
            return False
        if error.error_type == ErrorType.RATE_LIMITED:
            # Fitbit quotas reset hourly; holding a request open that long is worse than failing the date
            return self.rate_limit_wait(error) <= self.rate_limit_max_wait
        return True

    def rate_limit_wait(self, error: SyncError) -> float:
        if error.retry_after is not None:
            return error.retry_after
        return self.rate_limit_default_wait

    def backoff_delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Exponential delay for the given attempt (1-based) with jitter, capped at max_delay."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        delay += delay * self.jitter * rng()
        return min(delay, self.max_delay)

    def delay_for(self, error: SyncError, attempt: int) -> float:
        if error.error_type == ErrorType.RATE_LIMITED:
            return self.rate_limit_wait(error)
        return self.backoff_delay(attempt)


async def call_with_retry(
    func: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    context: str = "",
) -> Any:
    """
    Call func until it succeeds or the policy gives up.

    The raised SyncError carries the number of attempts made.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except Exception as e:
            error = error_from_exception(e, context or "request")
            error.attempts = attempt
            if not policy.should_retry(error, attempt):
                if attempt > 1:
                    logger.error(f"{context} failed after {attempt} attempts: {error.message}")
                if error is e:
                    raise
                raise error from e

            wait_time = policy.delay_for(error, attempt)
            logger.warning(
                f"{context}: {error.error_type.value}, waiting {wait_time:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await sleep(wait_time)
