"""Error taxonomy and classification for outbound API calls.

Provides:
- ApiError hierarchy (network, timeout, HTTP status, circuit open, unclassified)
- classify_error() to normalize any raised exception
- format_error_response() for caller-facing error payloads
"""

import asyncio
import errno
import socket
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

NETWORK_ERROR_CODES = frozenset({"ECONNREFUSED", "ENOTFOUND", "ECONNRESET"})
TIMEOUT_ERROR_CODES = frozenset({"ETIMEDOUT"})


class ApiError(Exception):
    """Base class for classified API errors.

    The retryable/network/timeout flags are derived from the concrete
    subclass and cannot be set independently.
    """

    is_network_error = False
    is_timeout_error = False

    def __init__(
        self,
        message: str = "",
        http_status: Optional[int] = None,
        code: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.code = code
        self.retry_after = retry_after

    @property
    def is_retryable(self) -> bool:
        """Whether the failure is safe to retry."""
        return False

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"http_status={self.http_status}, code={self.code!r})"
        )


class NetworkError(ApiError):
    """Connection-level failure (refused, reset, host not found)."""

    is_network_error = True

    @property
    def is_retryable(self) -> bool:
        return True


class RequestTimeoutError(ApiError):
    """Deadline elapsed before the operation completed."""

    is_timeout_error = True

    def __init__(self, message: str = "Request timeout", timeout: float = 0.0, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout

    @property
    def is_retryable(self) -> bool:
        return True


class HttpStatusError(ApiError):
    """Non-2xx response carrying an HTTP status code."""

    def __init__(
        self,
        message: str,
        http_status: int,
        code: Optional[str] = None,
        retry_after: Optional[float] = None,
        retryable_status_codes: Iterable[int] = DEFAULT_RETRYABLE_STATUS_CODES,
    ):
        super().__init__(
            message,
            http_status=http_status,
            code=code or f"HTTP_{http_status}",
            retry_after=retry_after,
        )
        self.retryable_status_codes = frozenset(retryable_status_codes)

    @property
    def is_retryable(self) -> bool:
        return self.http_status in self.retryable_status_codes


class CircuitOpenError(ApiError):
    """Call rejected because the route's circuit breaker is open."""

    def __init__(self, message: str = "Circuit breaker is open", route: Optional[str] = None):
        super().__init__(message, code="CIRCUIT_OPEN")
        self.route = route


class UnclassifiedError(ApiError):
    """Failure of unknown shape; never retried."""


def _error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code.upper()
    err_no = getattr(error, "errno", None)
    if isinstance(err_no, int):
        return errno.errorcode.get(err_no)
    return None


def _is_network_failure(error: BaseException) -> bool:
    if isinstance(error, (httpx.ConnectError, httpx.NetworkError)):
        return True
    if isinstance(error, (ConnectionError, socket.gaierror)):
        return True
    return _error_code(error) in NETWORK_ERROR_CODES


def _is_timeout_failure(error: BaseException) -> bool:
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return True
    if _error_code(error) in TIMEOUT_ERROR_CODES:
        return True
    return "timeout" in str(error)


def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def classify_error(
    error: BaseException,
    retryable_status_codes: Iterable[int] = DEFAULT_RETRYABLE_STATUS_CODES,
) -> ApiError:
    """Classify a raw exception into the ApiError taxonomy.

    Checks are applied in order: already classified, network failure,
    timeout, HTTP status, then unclassified. The returned error keeps the
    raw exception as its ``__cause__``.

    Args:
        error: The exception raised by the operation
        retryable_status_codes: HTTP statuses considered transient

    Returns:
        Classified error (the same object if already classified)
    """
    if isinstance(error, ApiError):
        return error

    message = str(error) or type(error).__name__

    if _is_network_failure(error):
        classified: ApiError = NetworkError(message, code=_error_code(error))
    elif _is_timeout_failure(error):
        classified = RequestTimeoutError(message, code=_error_code(error))
    else:
        status = _status_code(error)
        if status is not None:
            retry_after = None
            if isinstance(error, httpx.HTTPStatusError):
                retry_after = parse_retry_after(error.response.headers.get("Retry-After"))
            classified = HttpStatusError(
                message,
                http_status=status,
                retry_after=retry_after,
                retryable_status_codes=retryable_status_codes,
            )
        else:
            classified = UnclassifiedError(message, code=_error_code(error))

    classified.__cause__ = error
    return classified


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given as integer seconds.

    HTTP-date values are not supported and yield ``None``.
    """
    if not value:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    return float(seconds) if seconds >= 0 else None


@dataclass
class ErrorResponse:
    """Caller-facing error payload."""

    error: str
    details: Optional[str] = None
    code: Optional[str] = None
    retry_after: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize, omitting unset fields."""
        result: dict[str, Any] = {"error": self.error}
        if self.details:
            result["details"] = self.details
        if self.code:
            result["code"] = self.code
        if self.retry_after:
            result["retry_after"] = self.retry_after
        return result


def format_error_response(error: BaseException) -> ErrorResponse:
    """Build an ErrorResponse from any exception."""
    classified = classify_error(error) if isinstance(error, Exception) else None
    if classified is None:
        return ErrorResponse(error=str(error) or "An unexpected error occurred")

    details = getattr(error, "details", None)
    return ErrorResponse(
        error=classified.message or "An unexpected error occurred",
        details=details if isinstance(details, str) else None,
        code=classified.code,
        retry_after=classified.retry_after,
    )
