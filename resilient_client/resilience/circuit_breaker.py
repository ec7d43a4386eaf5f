"""Per-route circuit breaker.

Provides failure isolation with:
- Three states: CLOSED (normal), OPEN (failing), HALF_OPEN (testing)
- Configurable failure threshold and recovery timeout
- Lazy OPEN -> HALF_OPEN transition on the next execution check
"""

import functools
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Route failing, reject requests
    HALF_OPEN = "HALF_OPEN"  # Testing if route recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for a route circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    recovery_timeout: float = 60.0  # Seconds before trying half-open
    expected_error_rate: float = 0.5  # Informational, not enforced
    half_open_max_calls: Optional[int] = None  # None lets every trial call through

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must not be negative")
        if not 0 < self.expected_error_rate <= 1:
            raise ValueError("expected_error_rate must be in (0, 1]")
        if self.half_open_max_calls is not None and self.half_open_max_calls < 1:
            raise ValueError("half_open_max_calls must be at least 1")


class CircuitBreaker:
    """Circuit breaker guarding a single route.

    Usage:
        breaker = CircuitBreaker("GET:/posts")

        if breaker.can_execute():
            try:
                result = await call_route()
                breaker.on_success()
            except Exception:
                breaker.on_failure()
                raise
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            name: Route name for logging
            config: Circuit breaker configuration
            clock: Monotonic time source, injectable for tests
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_calls = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state, without triggering the recovery transition."""
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def last_failure_time(self) -> Optional[float]:
        with self._lock:
            return self._last_failure_time

    def can_execute(self) -> bool:
        """Check if a request may proceed.

        An OPEN breaker whose recovery timeout has elapsed moves to
        HALF_OPEN here and lets the call through.

        Returns:
            True if request can proceed
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if not self._recovery_elapsed():
                    return False
                self._transition_to_half_open()

            # HALF_OPEN
            limit = self.config.half_open_max_calls
            if limit is not None and self._half_open_calls >= limit:
                return False
            self._half_open_calls += 1
            return True

    def on_success(self) -> None:
        """Record a successful request."""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info(f"Circuit breaker {self.name} CLOSED - route recovered")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0

    def release_trial(self) -> None:
        """Give back a half-open slot taken by a call that recorded no outcome.

        Used when a trial call is cancelled before it succeeds or fails.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def on_failure(self) -> None:
        """Record a failed request."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open goes back to open
                self._transition_to_open()
            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to_open()

    def _recovery_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time >= self.config.recovery_timeout

    def _transition_to_open(self) -> None:
        logger.warning(f"Circuit breaker {self.name} OPENED after {self._failure_count} failures")
        self._state = CircuitState.OPEN
        self._half_open_calls = 0

    def _transition_to_half_open(self) -> None:
        logger.info(f"Circuit breaker {self.name} entering HALF_OPEN for recovery test")
        self._state = CircuitState.HALF_OPEN
        self._half_open_calls = 0

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_calls = 0
        logger.info(f"Circuit breaker {self.name} manually reset")

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an async operation behind the breaker.

        Raises:
            CircuitOpenError: If the breaker rejects the call
        """
        if not self.can_execute():
            raise CircuitOpenError(f"Circuit breaker {self.name} is open", route=self.name)

        try:
            result = await operation()
        except Exception:
            self.on_failure()
            raise
        except BaseException:
            self.release_trial()
            raise
        self.on_success()
        return result

    def protect(self, func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        """Decorator to protect an async function with this breaker.

        Args:
            func: Function to protect

        Returns:
            Protected function
        """

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await self.call(lambda: func(*args, **kwargs))

        return wrapper

    def get_status(self) -> dict[str, Any]:
        """Get circuit breaker status.

        Returns:
            Status dictionary
        """
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "last_failure": self._last_failure_time,
            }
