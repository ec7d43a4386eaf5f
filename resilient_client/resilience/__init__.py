"""Resilience layer for outbound API calls.

This module provides:
- Error classification
- Retry with exponential backoff
- Per-route circuit breakers
- Timeout handling
- Fallback data
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .errors import (
    ApiError,
    CircuitOpenError,
    ErrorResponse,
    HttpStatusError,
    NetworkError,
    RequestTimeoutError,
    UnclassifiedError,
    classify_error,
    format_error_response,
)
from .fallback import FallbackProvider, with_fallback
from .retry import RetryConfig, RetryHandler, calculate_backoff, retry_with_backoff
from .timeout import TimeoutConfig, TimeoutHandler, with_async_timeout, with_timeout

__all__ = [
    "ApiError",
    "NetworkError",
    "RequestTimeoutError",
    "HttpStatusError",
    "CircuitOpenError",
    "UnclassifiedError",
    "ErrorResponse",
    "classify_error",
    "format_error_response",
    "RetryConfig",
    "RetryHandler",
    "calculate_backoff",
    "retry_with_backoff",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "TimeoutConfig",
    "TimeoutHandler",
    "with_timeout",
    "with_async_timeout",
    "FallbackProvider",
    "with_fallback",
]
