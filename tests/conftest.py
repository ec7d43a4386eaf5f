"""Pytest configuration and fixtures for resilient_client tests."""

import json

import httpx
import pytest

from resilient_client.config import Settings
from resilient_client.monitoring.metrics import reset_metrics


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture(autouse=True)
def use_test_environment(monkeypatch):
    """Keep host environment variables out of client settings."""
    for key in ("RESILIENT_CLIENT_BASE_URL", "RESILIENT_CLIENT_RETRY_MAX_ATTEMPTS"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def clean_metrics():
    """Reset module-level metrics between tests."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_http_client():
    """Build an httpx.AsyncClient backed by a request handler."""

    def factory(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def json_response():
    """Build a JSON httpx.Response."""

    def factory(status_code: int, payload, headers=None) -> httpx.Response:
        return httpx.Response(
            status_code,
            content=json.dumps(payload).encode(),
            headers={"content-type": "application/json", **(headers or {})},
        )

    return factory


@pytest.fixture
def fast_settings():
    """Settings with fast defaults for tests."""
    return Settings(
        _env_file=None,
        base_url="https://api.example.test",
        retry_base_delay=0.01,
        retry_max_delay=0.1,
        request_timeout=1.0,
        connection_timeout=0.5,
    )
