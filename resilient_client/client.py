"""Resilient HTTP API client.

Wraps every outbound call in a per-route circuit breaker, retry loop and
timeout, classifies failures, and substitutes registered fallback data
when all of that is exhausted.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, fields, is_dataclass
from typing import Any, Generic, Iterable, Mapping, Optional, TypeVar, Union

import httpx

from .config import Settings
from .config import settings as default_settings
from .monitoring.metrics import (
    circuit_state,
    fallbacks_total,
    request_latency_seconds,
    requests_total,
    retries_total,
)
from .resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .resilience.errors import (
    CircuitOpenError,
    HttpStatusError,
    classify_error,
    parse_retry_after,
)
from .resilience.fallback import FallbackProvider
from .resilience.retry import RetryConfig, RetryHandler, SleepFunc
from .resilience.timeout import TimeoutConfig, TimeoutHandler

logger = logging.getLogger(__name__)

T = TypeVar("T")

Overrides = Union[Mapping[str, Any], RetryConfig, CircuitBreakerConfig, TimeoutConfig, None]

_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


@dataclass
class RequestConfig:
    """Per-call resilience overrides.

    Each override mapping is merged over the client defaults, field by field.
    Overrides only take effect when they create a route's handlers, i.e. on
    the first call for that method and endpoint.
    """

    retry: Overrides = None
    circuit_breaker: Overrides = None
    timeout: Overrides = None
    fallback_key: Optional[str] = None


@dataclass
class ApiResponse(Generic[T]):
    """A response value tagged with where it came from."""

    value: T
    source: str  # "live" or "fallback"
    route: str

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


@dataclass
class RouteState:
    """Resilience handlers owned by a single route."""

    circuit_breaker: CircuitBreaker
    retry_handler: RetryHandler
    timeout_handler: TimeoutHandler


def _as_overrides(value: Overrides) -> dict[str, Any]:
    if value is None:
        return {}
    if is_dataclass(value):
        return {f.name: getattr(value, f.name) for f in fields(value)}
    return dict(value)


def route_key(method: str, endpoint: str) -> str:
    """Build the key identifying a route's resilience state."""
    return f"{(method or 'GET').upper()}:{endpoint}"


class ApiClient:
    """API client with per-route circuit breaking, retries and timeouts.

    Usage:
        async with ApiClient("https://api.example.com") as client:
            client.set_fallback_data("posts", [])
            posts = await client.get("/posts", RequestConfig(fallback_key="posts"))
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        retry: Overrides = None,
        circuit_breaker: Overrides = None,
        timeout: Overrides = None,
        http_client: Optional[httpx.AsyncClient] = None,
        fallbacks: Optional[FallbackProvider] = None,
        settings: Optional[Settings] = None,
        sleep: Optional[SleepFunc] = None,
        clock=time.monotonic,
    ):
        """Initialize API client.

        Args:
            base_url: Prefix joined to every endpoint (defaults to settings.base_url)
            retry: Instance-level retry overrides
            circuit_breaker: Instance-level circuit breaker overrides
            timeout: Instance-level timeout overrides
            http_client: Transport to use; one is created (and owned) if omitted
            fallbacks: Fallback registry, shareable between clients
            settings: Settings supplying the base defaults
            sleep: Async sleep used for retry backoff
            clock: Monotonic clock used by circuit breakers
        """
        self.settings = settings or default_settings
        self.base_url = self.settings.base_url if base_url is None else base_url
        self.fallbacks = fallbacks if fallbacks is not None else FallbackProvider()

        self._retry_defaults = {**self.settings.retry_defaults(), **_as_overrides(retry)}
        self._circuit_defaults = {
            **self.settings.circuit_breaker_defaults(),
            **_as_overrides(circuit_breaker),
        }
        self._timeout_defaults = {**self.settings.timeout_defaults(), **_as_overrides(timeout)}

        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(follow_redirects=True)
        self._sleep = sleep
        self._clock = clock

        self._routes: dict[str, RouteState] = {}
        self._routes_lock = threading.Lock()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying transport if this client created it."""
        if self._owns_http_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Route state
    # ------------------------------------------------------------------

    def _get_route(self, key: str, config: RequestConfig) -> RouteState:
        """Get or lazily create the handlers for a route (thread-safe)."""
        with self._routes_lock:
            route = self._routes.get(key)
            if route is not None:
                return route

            retry_config = RetryConfig(**{**self._retry_defaults, **_as_overrides(config.retry)})
            breaker_config = CircuitBreakerConfig(
                **{**self._circuit_defaults, **_as_overrides(config.circuit_breaker)}
            )
            timeout_config = TimeoutConfig(
                **{**self._timeout_defaults, **_as_overrides(config.timeout)}
            )

            route = RouteState(
                circuit_breaker=CircuitBreaker(key, breaker_config, clock=self._clock),
                retry_handler=RetryHandler(
                    retry_config,
                    sleep=self._sleep,
                    on_retry=lambda error, attempt, delay: retries_total.labels(route=key).inc(),
                ),
                timeout_handler=TimeoutHandler(timeout_config),
            )
            self._routes[key] = route
            logger.debug(f"Created resilience state for route {key}")
            return route

    def get_route_state(self, method: str, endpoint: str) -> Optional[RouteState]:
        """Return the handlers for a route, if it has been used."""
        with self._routes_lock:
            return self._routes.get(route_key(method, endpoint))

    def get_route_status(self, method: str, endpoint: str) -> Optional[dict[str, Any]]:
        """Get circuit breaker status for a route, or None if unused."""
        route = self.get_route_state(method, endpoint)
        if route is None:
            return None
        return route.circuit_breaker.get_status()

    def get_all_route_statuses(self) -> dict[str, dict[str, Any]]:
        """Get circuit breaker status for every known route."""
        with self._routes_lock:
            routes = dict(self._routes)
        return {key: route.circuit_breaker.get_status() for key, route in routes.items()}

    def reset_route(self, method: str, endpoint: str) -> bool:
        """Forget a route's state so the next call rebuilds it.

        Returns:
            True if the route existed
        """
        key = route_key(method, endpoint)
        with self._routes_lock:
            removed = self._routes.pop(key, None)
        if removed is not None:
            circuit_state.labels(route=key).set(_STATE_VALUES[CircuitState.CLOSED])
            logger.info(f"Reset resilience state for route {key}")
        return removed is not None

    # ------------------------------------------------------------------
    # Fallback data
    # ------------------------------------------------------------------

    def set_fallback_data(self, key: str, value: Any) -> None:
        self.fallbacks.set(key, value)

    def get_fallback_data(self, key: str) -> Any:
        return self.fallbacks.get(key)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Union[str, bytes, None] = None,
        config: Optional[RequestConfig] = None,
    ) -> Any:
        """Issue a request through the resilience stack.

        Returns:
            The parsed response, or registered fallback data

        Raises:
            ApiError: Classified failure once retries and fallbacks are exhausted
        """
        response = await self.request_detailed(
            endpoint, method=method, headers=headers, body=body, config=config
        )
        return response.value

    async def request_detailed(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Union[str, bytes, None] = None,
        config: Optional[RequestConfig] = None,
    ) -> ApiResponse:
        """Like request(), but reports whether the value is live or a fallback."""
        config = config or RequestConfig()
        method = (method or "GET").upper()
        key = route_key(method, endpoint)
        route = self._get_route(key, config)
        breaker = route.circuit_breaker
        started = time.perf_counter()

        if not breaker.can_execute():
            self._record_circuit_state(key, breaker)
            found, value = self.fallbacks.lookup(config.fallback_key)
            if found:
                logger.info(f"Circuit open for {key}, serving fallback '{config.fallback_key}'")
                return self._fallback_response(key, value)
            requests_total.labels(route=key, outcome="rejected").inc()
            raise CircuitOpenError("Circuit breaker is open", route=key)

        self._record_circuit_state(key, breaker)
        url = f"{self.base_url}{endpoint}"
        retry_codes = route.retry_handler.config.retryable_status_codes
        timeout_config = route.timeout_handler.config

        async def attempt() -> Any:
            return await route.timeout_handler.with_timeout(
                lambda: self._send(method, url, headers, body, timeout_config, retry_codes)
            )

        try:
            value = await route.retry_handler.execute(attempt)
        except Exception as e:
            breaker.on_failure()
            self._record_circuit_state(key, breaker)
            request_latency_seconds.labels(route=key).observe(time.perf_counter() - started)
            classified = classify_error(e, retry_codes)

            found, fallback_value = self.fallbacks.lookup(config.fallback_key)
            if found:
                logger.info(
                    f"Request {key} failed ({classified.message}), "
                    f"serving fallback '{config.fallback_key}'"
                )
                return self._fallback_response(key, fallback_value)

            requests_total.labels(route=key, outcome="error").inc()
            if classified is e:
                raise
            raise classified from e
        except BaseException:
            # Cancelled before an outcome; free the half-open slot
            breaker.release_trial()
            self._record_circuit_state(key, breaker)
            raise

        breaker.on_success()
        self._record_circuit_state(key, breaker)
        request_latency_seconds.labels(route=key).observe(time.perf_counter() - started)
        requests_total.labels(route=key, outcome="success").inc()
        return ApiResponse(value=value, source="live", route=key)

    async def _send(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]],
        body: Union[str, bytes, None],
        timeout_config: TimeoutConfig,
        retryable_status_codes: Iterable[int],
    ) -> Any:
        """Perform one HTTP exchange and decode the response."""
        merged_headers = httpx.Headers({"Content-Type": "application/json"})
        if headers:
            merged_headers.update(headers)

        response = await self._http.request(
            method,
            url,
            headers=merged_headers,
            content=body,
            timeout=httpx.Timeout(
                timeout_config.request_timeout,
                connect=timeout_config.connection_timeout,
            ),
        )

        if not response.is_success:
            raise HttpStatusError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                http_status=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                retryable_status_codes=retryable_status_codes,
            )

        if "application/json" in response.headers.get("content-type", ""):
            return response.json() if response.content else None
        return response.text

    def _fallback_response(self, key: str, value: Any) -> ApiResponse:
        fallbacks_total.labels(route=key).inc()
        requests_total.labels(route=key, outcome="fallback").inc()
        return ApiResponse(value=value, source="fallback", route=key)

    def _record_circuit_state(self, key: str, breaker: CircuitBreaker) -> None:
        circuit_state.labels(route=key).set(_STATE_VALUES[breaker.state])

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    async def get(self, endpoint: str, config: Optional[RequestConfig] = None) -> Any:
        return await self.request(endpoint, method="GET", config=config)

    async def post(
        self,
        endpoint: str,
        data: Any = None,
        config: Optional[RequestConfig] = None,
    ) -> Any:
        return await self.request(
            endpoint,
            method="POST",
            body=json.dumps(data) if data is not None else None,
            config=config,
        )

    async def put(
        self,
        endpoint: str,
        data: Any = None,
        config: Optional[RequestConfig] = None,
    ) -> Any:
        return await self.request(
            endpoint,
            method="PUT",
            body=json.dumps(data) if data is not None else None,
            config=config,
        )

    async def delete(self, endpoint: str, config: Optional[RequestConfig] = None) -> Any:
        return await self.request(endpoint, method="DELETE", config=config)


__all__ = [
    "ApiClient",
    "ApiResponse",
    "RequestConfig",
    "RouteState",
    "route_key",
]
