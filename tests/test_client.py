"""Tests for the resilient ApiClient."""

import asyncio
import json
import time

import httpx
import pytest

from resilient_client.client import ApiClient, RequestConfig, route_key
from resilient_client.monitoring.metrics import (
    circuit_state,
    fallbacks_total,
    request_latency_seconds,
    requests_total,
    retries_total,
)
from resilient_client.resilience.circuit_breaker import CircuitState
from resilient_client.resilience.errors import (
    CircuitOpenError,
    HttpStatusError,
    NetworkError,
    RequestTimeoutError,
    UnclassifiedError,
)
from resilient_client.resilience.fallback import FallbackProvider
from resilient_client.resilience.retry import RetryConfig


BASE_URL = "https://api.example.test"


@pytest.fixture
def make_client(make_http_client, fast_settings, recording_sleep, fake_clock):
    """Build an ApiClient over a mock transport with recorded sleeps."""

    def factory(handler, **kwargs):
        kwargs.setdefault("settings", fast_settings)
        kwargs.setdefault("sleep", recording_sleep)
        kwargs.setdefault("clock", fake_clock)
        return ApiClient(BASE_URL, http_client=make_http_client(handler), **kwargs)

    return factory


class TestRouteKey:
    """Test route key construction."""

    def test_method_upper_cased(self):
        assert route_key("get", "/posts") == "GET:/posts"

    def test_default_method(self):
        assert route_key("", "/posts") == "GET:/posts"


@pytest.mark.integration
class TestWireBehavior:
    """Test request encoding and response decoding."""

    @pytest.mark.asyncio
    async def test_get_parses_json(self, make_client, json_response):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(200, {"posts": [1, 2]})

        client = make_client(handler)
        assert await client.get("/posts") == {"posts": [1, 2]}
        assert str(seen[0].url) == f"{BASE_URL}/posts"
        assert seen[0].method == "GET"
        assert seen[0].headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_non_json_returned_as_text(self, make_client):
        client = make_client(
            lambda request: httpx.Response(200, text="pong", headers={"content-type": "text/plain"})
        )
        assert await client.get("/ping") == "pong"

    @pytest.mark.asyncio
    async def test_empty_json_body(self, make_client):
        client = make_client(
            lambda request: httpx.Response(204, headers={"content-type": "application/json"})
        )
        assert await client.delete("/posts/1") is None

    @pytest.mark.asyncio
    async def test_post_encodes_body_and_merges_headers(self, make_client, json_response):
        seen = []

        def handler(request):
            seen.append(request)
            return json_response(201, {"id": 7})

        client = make_client(handler)
        result = await client.request(
            "/posts",
            method="post",
            headers={"Authorization": "Bearer token", "content-type": "application/vnd.api+json"},
            body=json.dumps({"title": "hello"}),
        )

        assert result == {"id": 7}
        request = seen[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"title": "hello"}
        assert request.headers["authorization"] == "Bearer token"
        assert request.headers.get_list("content-type") == ["application/vnd.api+json"]

    @pytest.mark.asyncio
    async def test_put_and_post_helpers(self, make_client, json_response):
        seen = []

        def handler(request):
            seen.append((request.method, request.content))
            return json_response(200, {"ok": True})

        client = make_client(handler)
        await client.post("/posts", {"title": "a"})
        await client.put("/posts/1", {"title": "b"})
        await client.post("/posts/empty")

        assert seen[0] == ("POST", b'{"title": "a"}')
        assert seen[1] == ("PUT", b'{"title": "b"}')
        assert seen[2] == ("POST", b"")

    @pytest.mark.asyncio
    async def test_error_status_carries_retry_after(self, make_client, json_response):
        client = make_client(
            lambda request: json_response(404, {"error": "missing"}, headers={"Retry-After": "12"})
        )
        with pytest.raises(HttpStatusError) as exc_info:
            await client.get("/posts/404")

        error = exc_info.value
        assert error.http_status == 404
        assert error.code == "HTTP_404"
        assert error.retry_after == 12.0
        assert error.is_retryable is False
        assert error.message == "HTTP 404: Not Found"


@pytest.mark.integration
class TestRetryBehavior:
    """Test retries through the client."""

    @pytest.mark.asyncio
    async def test_persistent_503_exhausts_three_attempts(
        self, make_client, json_response, recording_sleep
    ):
        """Test 3 attempts with 1s then 2s backoff, surfacing the 503."""
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return json_response(503, {"error": "unavailable"})

        client = make_client(
            handler,
            retry={"max_attempts": 3, "base_delay": 1.0, "max_delay": 10.0, "backoff_multiplier": 2},
        )
        with pytest.raises(HttpStatusError) as exc_info:
            await client.get("/posts")

        assert calls == 3
        assert recording_sleep.delays == [1.0, 2.0]
        assert exc_info.value.http_status == 503
        assert exc_info.value.is_retryable is True
        assert retries_total.get(route="GET:/posts") == 2

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, make_client, json_response):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            if calls == 1:
                return json_response(502, {})
            return json_response(200, {"ok": True})

        client = make_client(handler)
        assert await client.get("/posts") == {"ok": True}
        assert calls == 2
        assert client.get_route_status("GET", "/posts")["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_connection_refused_retried_without_retryable_statuses(self, make_client):
        """Test network failures are retried even with an empty status set."""
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("Connection refused", request=request)

        client = make_client(handler)
        config = RequestConfig(retry={"max_attempts": 3, "retryable_status_codes": frozenset()})
        with pytest.raises(NetworkError) as exc_info:
            await client.get("/posts", config)

        assert calls == 3
        assert exc_info.value.is_network_error is True
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_unclassified_error_not_retried(self, make_client):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            raise RuntimeError("serializer exploded")

        client = make_client(handler)
        with pytest.raises(UnclassifiedError):
            await client.get("/posts")
        assert calls == 1


@pytest.mark.integration
class TestTimeoutBehavior:
    """Test per-attempt deadlines."""

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_hung_request_times_out_at_deadline(self, make_http_client, fast_settings):
        cancelled = asyncio.Event()

        async def handler(request):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return httpx.Response(200)

        client = ApiClient(
            BASE_URL,
            http_client=make_http_client(handler),
            settings=fast_settings,
            timeout={"request_timeout": 0.1},
            retry={"max_attempts": 1},
        )
        started = time.monotonic()
        with pytest.raises(RequestTimeoutError) as exc_info:
            await client.get("/slow")
        elapsed = time.monotonic() - started

        assert elapsed >= 0.095
        assert elapsed < 2.0
        assert exc_info.value.is_timeout_error is True
        assert exc_info.value.message == "Request timeout"
        assert cancelled.is_set()


@pytest.mark.integration
class TestCircuitBreaking:
    """Test per-route circuit breaking."""

    @pytest.mark.asyncio
    async def test_third_call_rejected_without_transport(self, make_client, json_response):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return json_response(500, {})

        client = make_client(
            handler,
            retry={"max_attempts": 1},
            circuit_breaker={"failure_threshold": 2},
        )
        for _ in range(2):
            with pytest.raises(HttpStatusError):
                await client.get("/posts")

        with pytest.raises(CircuitOpenError) as exc_info:
            await client.get("/posts")

        assert calls == 2
        assert exc_info.value.route == "GET:/posts"
        assert exc_info.value.is_retryable is False
        assert requests_total.get(route="GET:/posts", outcome="rejected") == 1
        assert circuit_state.get(route="GET:/posts") == 2
        # Rejections never reach the transport, so they are not timed
        assert request_latency_seconds.get(route="GET:/posts")["count"] == 2

    @pytest.mark.asyncio
    async def test_routes_are_isolated(self, make_client, json_response):
        def handler(request):
            if request.url.path == "/broken":
                return json_response(500, {})
            return json_response(200, {"ok": True})

        client = make_client(handler, retry={"max_attempts": 1}, circuit_breaker={"failure_threshold": 1})
        with pytest.raises(HttpStatusError):
            await client.get("/broken")

        assert await client.get("/healthy") == {"ok": True}
        assert client.get_route_status("GET", "/broken")["state"] == "OPEN"
        assert client.get_route_status("GET", "/healthy")["state"] == "CLOSED"

    @pytest.mark.asyncio
    async def test_recovers_through_half_open(self, make_client, json_response, fake_clock):
        healthy = False

        def handler(request):
            return json_response(200, {"ok": True}) if healthy else json_response(503, {})

        client = make_client(
            handler,
            retry={"max_attempts": 1},
            circuit_breaker={"failure_threshold": 1, "recovery_timeout": 30.0},
        )
        with pytest.raises(HttpStatusError):
            await client.get("/posts")
        with pytest.raises(CircuitOpenError):
            await client.get("/posts")

        fake_clock.advance(30.0)
        healthy = True
        assert await client.get("/posts") == {"ok": True}
        route = client.get_route_state("GET", "/posts")
        assert route.circuit_breaker.state == CircuitState.CLOSED
        assert route.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_trial_call_frees_half_open_slot(self, make_client, json_response, fake_clock):
        mode = "fail"
        trial_started = asyncio.Event()

        async def handler(request):
            if mode == "fail":
                return json_response(503, {})
            if mode == "hang":
                trial_started.set()
                await asyncio.sleep(10)
            return json_response(200, {"ok": True})

        client = make_client(
            handler,
            retry={"max_attempts": 1},
            timeout={"request_timeout": 30.0},
            circuit_breaker={"failure_threshold": 1, "recovery_timeout": 10.0, "half_open_max_calls": 1},
        )
        with pytest.raises(HttpStatusError):
            await client.get("/posts")

        fake_clock.advance(10.0)
        mode = "hang"
        task = asyncio.create_task(client.get("/posts"))
        await trial_started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.get_route_status("GET", "/posts")["state"] == "HALF_OPEN"
        mode = "ok"
        assert await client.get("/posts") == {"ok": True}
        assert client.get_route_status("GET", "/posts")["state"] == "CLOSED"

    @pytest.mark.asyncio
    async def test_reset_route_rebuilds_state(self, make_client, json_response):
        client = make_client(
            lambda request: json_response(500, {}),
            retry={"max_attempts": 1},
            circuit_breaker={"failure_threshold": 1},
        )
        with pytest.raises(HttpStatusError):
            await client.get("/posts")

        assert client.reset_route("GET", "/posts") is True
        assert client.get_route_status("GET", "/posts") is None
        assert client.reset_route("GET", "/posts") is False


@pytest.mark.integration
class TestFallbacks:
    """Test fallback substitution."""

    @pytest.mark.asyncio
    async def test_fallback_after_retries_exhausted(self, make_client, json_response):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return json_response(503, {})

        client = make_client(handler, retry={"max_attempts": 3})
        cached = [{"id": 1, "title": "cached"}]
        client.set_fallback_data("posts", cached)

        result = await client.get("/posts", RequestConfig(fallback_key="posts"))
        assert result == cached
        assert calls == 3
        assert fallbacks_total.get(route="GET:/posts") == 1
        assert client.get_route_status("GET", "/posts")["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_fallback_while_circuit_open(self, make_client, json_response):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return json_response(500, {})

        client = make_client(handler, retry={"max_attempts": 1}, circuit_breaker={"failure_threshold": 1})
        client.set_fallback_data("posts", [])
        config = RequestConfig(fallback_key="posts")

        assert await client.get("/posts", config) == []
        response = await client.request_detailed("/posts", config=config)
        assert response.value == []
        assert response.is_fallback is True
        assert calls == 1

    @pytest.mark.asyncio
    async def test_missing_fallback_key_surfaces_error(self, make_client, json_response):
        client = make_client(lambda request: json_response(500, {}), retry={"max_attempts": 1})
        with pytest.raises(HttpStatusError):
            await client.get("/posts", RequestConfig(fallback_key="never-set"))

    @pytest.mark.asyncio
    async def test_request_detailed_live(self, make_client, json_response):
        client = make_client(lambda request: json_response(200, {"ok": True}))
        response = await client.request_detailed("/posts")
        assert response.source == "live"
        assert response.route == "GET:/posts"
        assert response.is_fallback is False

    @pytest.mark.asyncio
    async def test_shared_fallback_registry(self, make_client, json_response):
        shared = FallbackProvider({"posts": ["shared"]})
        client = make_client(
            lambda request: json_response(500, {}),
            retry={"max_attempts": 1},
            fallbacks=shared,
        )
        assert await client.get("/posts", RequestConfig(fallback_key="posts")) == ["shared"]
        assert client.get_fallback_data("posts") == ["shared"]


class TestConfigMerging:
    """Test settings, instance and per-call config precedence."""

    @pytest.mark.asyncio
    async def test_per_call_overrides_instance_defaults(self, make_client, json_response):
        client = make_client(
            lambda request: json_response(200, {}),
            retry={"max_attempts": 5, "base_delay": 0.05},
        )
        await client.get("/posts", RequestConfig(retry={"max_attempts": 2}))

        config = client.get_route_state("GET", "/posts").retry_handler.config
        assert config.max_attempts == 2
        assert config.base_delay == 0.05
        assert config.max_delay == 0.1

    @pytest.mark.asyncio
    async def test_dataclass_overrides_accepted(self, make_client, json_response):
        client = make_client(lambda request: json_response(200, {}))
        await client.get(
            "/posts",
            RequestConfig(retry=RetryConfig(max_attempts=4, base_delay=0.2, max_delay=2.0)),
        )
        config = client.get_route_state("GET", "/posts").retry_handler.config
        assert (config.max_attempts, config.base_delay, config.max_delay) == (4, 0.2, 2.0)

    @pytest.mark.asyncio
    async def test_first_call_fixes_route_config(self, make_client, json_response):
        client = make_client(lambda request: json_response(200, {}))
        await client.get("/posts", RequestConfig(retry={"max_attempts": 2}))
        await client.get("/posts", RequestConfig(retry={"max_attempts": 7}))
        assert client.get_route_state("GET", "/posts").retry_handler.config.max_attempts == 2

    def test_settings_provide_defaults(self, make_client, fast_settings, json_response):
        client = make_client(lambda request: json_response(200, {}))
        assert client._retry_defaults["base_delay"] == fast_settings.retry_base_delay
        assert client._timeout_defaults["request_timeout"] == fast_settings.request_timeout


class TestConcurrency:
    """Test concurrent use of a single client."""

    @pytest.mark.asyncio
    async def test_concurrent_first_use_creates_one_route(self, make_client, json_response):
        async def handler(request):
            await asyncio.sleep(0.01)
            return json_response(200, {"ok": True})

        client = make_client(handler)
        results = await asyncio.gather(*(client.get("/posts") for _ in range(20)))

        assert results == [{"ok": True}] * 20
        assert list(client.get_all_route_statuses()) == ["GET:/posts"]
        assert requests_total.get(route="GET:/posts", outcome="success") == 20

    @pytest.mark.asyncio
    async def test_slow_route_does_not_block_others(self, make_client, json_response):
        release = asyncio.Event()

        async def handler(request):
            if request.url.path == "/slow":
                await release.wait()
            return json_response(200, {"path": request.url.path})

        client = make_client(handler)
        slow = asyncio.create_task(client.get("/slow"))
        assert await client.get("/fast") == {"path": "/fast"}
        assert not slow.done()

        release.set()
        assert await slow == {"path": "/slow"}


class TestLifecycle:
    """Test client lifecycle."""

    @pytest.mark.asyncio
    async def test_owned_client_closed(self, fast_settings):
        async with ApiClient(BASE_URL, settings=fast_settings) as client:
            http = client._http
        assert http.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, make_http_client, fast_settings):
        http = make_http_client(lambda request: httpx.Response(200))
        async with ApiClient(BASE_URL, http_client=http, settings=fast_settings):
            pass
        assert not http.is_closed
        await http.aclose()
