"""Timeout wrappers for outbound calls.

Provides timeout protection with:
- Per-route request deadlines
- Cancellation of the in-flight operation when the deadline wins
- Decorator and one-shot helpers for ad-hoc coroutines
"""

import asyncio
import functools
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from .errors import RequestTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TimeoutConfig:
    """Configuration for timeout handling."""

    request_timeout: float = 10.0  # Overall deadline per attempt, seconds
    connection_timeout: float = 5.0  # Passed to the transport, not enforced here

    def __post_init__(self):
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.connection_timeout <= 0:
            raise ValueError("connection_timeout must be positive")


class TimeoutHandler:
    """Races an operation against the configured request deadline."""

    def __init__(self, config: Optional[TimeoutConfig] = None):
        """Initialize timeout handler.

        Args:
            config: Timeout configuration
        """
        self.config = config or TimeoutConfig()

    async def with_timeout(
        self,
        operation: Union[Callable[[], Awaitable[T]], Awaitable[T]],
    ) -> T:
        """Run an operation, failing if it exceeds ``request_timeout``.

        The operation is cancelled when the deadline elapses first, so the
        underlying request does not keep running in the background.

        Args:
            operation: Zero-argument async callable, or an awaitable

        Returns:
            The operation's result

        Raises:
            RequestTimeoutError: If the deadline elapses first
        """
        awaitable = operation() if callable(operation) else operation
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.request_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Request timed out after {self.config.request_timeout}s")
            raise RequestTimeoutError(
                "Request timeout",
                timeout=self.config.request_timeout,
            ) from None


def with_timeout(
    seconds: float = 10.0,
    on_timeout: Optional[Callable[[str], None]] = None,
):
    """Decorator to add a deadline to an async function.

    Args:
        seconds: Timeout in seconds
        on_timeout: Optional callback invoked with the function name on timeout

    Returns:
        Decorated function

    Usage:
        @with_timeout(5)
        async def fetch_posts():
            ...
    """
    handler = TimeoutHandler(TimeoutConfig(request_timeout=seconds))

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"with_timeout requires an async function, got {func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            try:
                return await handler.with_timeout(lambda: func(*args, **kwargs))
            except RequestTimeoutError:
                if on_timeout:
                    try:
                        on_timeout(func.__name__)
                    except Exception as callback_error:
                        logger.error(f"on_timeout callback failed for {func.__name__}: {callback_error}")
                raise

        return wrapper

    return decorator


async def with_async_timeout(
    coro: Awaitable[T],
    timeout_seconds: float,
) -> T:
    """Execute a coroutine with a one-off deadline.

    Args:
        coro: Coroutine to execute
        timeout_seconds: Timeout in seconds

    Returns:
        Coroutine result

    Raises:
        RequestTimeoutError: If the timeout is exceeded
    """
    return await TimeoutHandler(TimeoutConfig(request_timeout=timeout_seconds)).with_timeout(coro)
