"""resilient_client: outbound API client with circuit breaking, retries and fallbacks."""

__version__ = "0.1.0"

from .client import ApiClient, ApiResponse, RequestConfig, route_key
from .resilience import (
    ApiError,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    FallbackProvider,
    HttpStatusError,
    NetworkError,
    RequestTimeoutError,
    RetryConfig,
    RetryHandler,
    TimeoutConfig,
    TimeoutHandler,
    UnclassifiedError,
    classify_error,
    format_error_response,
)

__all__ = [
    "ApiClient",
    "ApiResponse",
    "RequestConfig",
    "route_key",
    "ApiError",
    "NetworkError",
    "RequestTimeoutError",
    "HttpStatusError",
    "CircuitOpenError",
    "UnclassifiedError",
    "classify_error",
    "format_error_response",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "RetryConfig",
    "RetryHandler",
    "TimeoutConfig",
    "TimeoutHandler",
    "FallbackProvider",
]
