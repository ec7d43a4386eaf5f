"""Retry with exponential backoff.

Provides automatic retry for transient failures with:
- Configurable attempt count
- Exponential backoff capped at a maximum delay
- Retry decisions driven by error classification
"""

import asyncio
import functools
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from .errors import DEFAULT_RETRYABLE_STATUS_CODES, ApiError, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]
OnRetry = Callable[[ApiError, int, float], None]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0  # Base delay in seconds
    max_delay: float = 10.0  # Maximum delay in seconds
    backoff_multiplier: float = 2.0
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_STATUS_CODES
    )
    respect_retry_after: bool = False  # Let Retry-After extend the computed delay

    def __post_init__(self):
        self.retryable_status_codes = frozenset(self.retryable_status_codes)
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay must not exceed max_delay")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """Calculate the delay after a failed attempt.

    Args:
        attempt: Number of the attempt that just failed (1-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds, never above ``max_delay``
    """
    if config.base_delay == 0:
        return 0.0
    exponent = max(attempt - 1, 0)
    if config.backoff_multiplier > 1:
        # Compare in log space so huge attempt counts cannot overflow
        limit = math.log(config.max_delay / config.base_delay, config.backoff_multiplier)
        if exponent >= limit:
            return config.max_delay
    delay = config.base_delay * (config.backoff_multiplier**exponent)
    return min(delay, config.max_delay)


class RetryHandler:
    """Re-invokes a failing operation with exponential backoff.

    Usage:
        handler = RetryHandler(RetryConfig(max_attempts=3))
        result = await handler.execute(lambda: client.get("/posts"))
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Optional[SleepFunc] = None,
        on_retry: Optional[OnRetry] = None,
    ):
        """Initialize retry handler.

        Args:
            config: Retry configuration
            sleep: Async sleep function, injectable for tests
            on_retry: Optional callback (error, attempt, delay) before each backoff
        """
        self.config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep
        self._on_retry = on_retry

    def _delay_for(self, attempt: int, error: ApiError) -> float:
        delay = calculate_backoff(attempt, self.config)
        if self.config.respect_retry_after and error.retry_after:
            delay = min(max(delay, error.retry_after), self.config.max_delay)
        return delay

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run the operation, retrying retryable failures.

        The original exception is re-raised unchanged once attempts are
        exhausted or the failure is not retryable. Cancellation during a
        backoff sleep propagates immediately.

        Args:
            operation: Zero-argument async callable

        Returns:
            The operation's result
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                classified = classify_error(e, self.config.retryable_status_codes)

                if not classified.is_retryable:
                    logger.warning(f"Non-retryable error on attempt {attempt}: {classified.message}")
                    raise

                if attempt >= self.config.max_attempts:
                    logger.error(f"All {self.config.max_attempts} attempts failed: {classified.message}")
                    raise

                delay = self._delay_for(attempt, classified)
                logger.warning(
                    f"Attempt {attempt}/{self.config.max_attempts} failed: "
                    f"{classified.message}. Retrying in {delay:.2f}s"
                )

                if self._on_retry:
                    self._on_retry(classified, attempt, delay)

                await self._sleep(delay)
                attempt += 1


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_multiplier: float = 2.0,
    retryable_status_codes: Iterable[int] = DEFAULT_RETRYABLE_STATUS_CODES,
    on_retry: Optional[OnRetry] = None,
):
    """Decorator for retry with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        base_delay: Delay after the first failure
        max_delay: Maximum delay between retries
        backoff_multiplier: Growth factor per attempt
        retryable_status_codes: HTTP statuses treated as transient
        on_retry: Optional callback (error, attempt, delay)

    Returns:
        Decorated async function

    Usage:
        @retry_with_backoff(max_attempts=3)
        async def fetch_posts():
            ...
    """
    handler = RetryHandler(
        RetryConfig(
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            backoff_multiplier=backoff_multiplier,
            retryable_status_codes=frozenset(retryable_status_codes),
        ),
        on_retry=on_retry,
    )

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await handler.execute(lambda: func(*args, **kwargs))

        return wrapper

    return decorator
