"""Prometheus-format metrics for the resilient API client.

Tracks, per route:
- requests_total by outcome (success, fallback, error, rejected)
- request_latency_seconds
- retries_total
- circuit_state (0 closed, 1 half-open, 2 open)
- fallbacks_total
"""

import logging
import threading
from typing import Any, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Metric Classes (lightweight, no prometheus_client dependency)
# =============================================================================


class _Metric:
    """Shared label handling for all metric types."""

    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        self.name = name
        self.description = description
        self._label_names = labels or []
        self._lock = threading.Lock()

    def _key(self, label_kwargs: dict) -> tuple:
        return tuple(str(label_kwargs.get(l, "")) for l in self._label_names)

    def _format_labels(self, label_values: tuple, extra: str = "") -> str:
        parts = [f'{l}="{v}"' for l, v in zip(self._label_names, label_values)]
        if extra:
            parts.append(extra)
        return "{" + ",".join(parts) + "}" if parts else ""

    def _header(self) -> list[str]:
        return [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]

    def reset(self) -> None:
        raise NotImplementedError


class Counter(_Metric):
    """A counter metric that can only increase."""

    kind = "counter"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        super().__init__(name, description, labels)
        self._values: dict[tuple, float] = {}

    def labels(self, **kwargs) -> "_BoundCounter":
        """Return a counter bound to specific label values."""
        return _BoundCounter(self, self._key(kwargs))

    def inc(self, value: float = 1.0) -> None:
        """Increment the unlabelled series."""
        self._inc((), value)

    def _inc(self, key: tuple, value: float) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value

    def get(self, **kwargs) -> float:
        with self._lock:
            return self._values.get(self._key(kwargs), 0)

    def get_all(self) -> dict[tuple, float]:
        with self._lock:
            return self._values.copy()

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> str:
        """Format as Prometheus text."""
        lines = self._header()
        with self._lock:
            for label_values, value in self._values.items():
                lines.append(f"{self.name}{self._format_labels(label_values)} {value}")
        return "\n".join(lines)


class _BoundCounter:
    def __init__(self, parent: Counter, key: tuple):
        self._parent = parent
        self._key = key

    def inc(self, value: float = 1.0) -> None:
        self._parent._inc(self._key, value)


class Gauge(_Metric):
    """A gauge metric that can be set to any value."""

    kind = "gauge"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        super().__init__(name, description, labels)
        self._values: dict[tuple, float] = {}

    def labels(self, **kwargs) -> "_BoundGauge":
        """Return a gauge bound to specific label values."""
        return _BoundGauge(self, self._key(kwargs))

    def set(self, value: float) -> None:
        self._set((), value)

    def _set(self, key: tuple, value: float) -> None:
        with self._lock:
            self._values[key] = value

    def get(self, **kwargs) -> Optional[float]:
        with self._lock:
            return self._values.get(self._key(kwargs))

    def get_all(self) -> dict[tuple, float]:
        with self._lock:
            return self._values.copy()

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> str:
        """Format as Prometheus text."""
        lines = self._header()
        with self._lock:
            for label_values, value in self._values.items():
                lines.append(f"{self.name}{self._format_labels(label_values)} {value}")
        return "\n".join(lines)


class _BoundGauge:
    def __init__(self, parent: Gauge, key: tuple):
        self._parent = parent
        self._key = key

    def set(self, value: float) -> None:
        self._parent._set(self._key, value)


class Histogram(_Metric):
    """A histogram metric for tracking latency distributions.

    Each label set keeps cumulative bucket counts plus a running sum and
    count, so storage does not grow with the number of observations.
    """

    kind = "histogram"
    DEFAULT_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[list[str]] = None,
        buckets: Optional[tuple] = None,
    ):
        super().__init__(name, description, labels)
        self.buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        self._series: dict[tuple, dict[str, Any]] = {}

    def labels(self, **kwargs) -> "_BoundHistogram":
        """Return a histogram bound to specific label values."""
        return _BoundHistogram(self, self._key(kwargs))

    def observe(self, value: float) -> None:
        self._observe((), value)

    def _observe(self, key: tuple, value: float) -> None:
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = {"buckets": [0] * len(self.buckets), "sum": 0.0, "count": 0}
                self._series[key] = series
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    series["buckets"][i] += 1
            series["sum"] += value
            series["count"] += 1

    def _snapshot(self, series: dict[str, Any]) -> dict[str, Any]:
        return {
            "buckets": dict(zip(self.buckets, series["buckets"])),
            "sum": series["sum"],
            "count": series["count"],
        }

    def get(self, **kwargs) -> Optional[dict[str, Any]]:
        """Return {buckets, sum, count} for one label set, or None if unseen."""
        with self._lock:
            series = self._series.get(self._key(kwargs))
            return self._snapshot(series) if series is not None else None

    def get_all(self) -> dict[tuple, dict[str, Any]]:
        with self._lock:
            return {k: self._snapshot(v) for k, v in self._series.items()}

    def reset(self) -> None:
        with self._lock:
            self._series.clear()

    def to_prometheus(self) -> str:
        """Format as Prometheus text."""
        lines = self._header()
        with self._lock:
            for label_values, series in self._series.items():
                for bound, bucket_count in zip(self.buckets, series["buckets"]):
                    labels = self._format_labels(label_values, f'le="{bound}"')
                    lines.append(f"{self.name}_bucket{labels} {bucket_count}")
                labels = self._format_labels(label_values, 'le="+Inf"')
                lines.append(f"{self.name}_bucket{labels} {series['count']}")
                plain = self._format_labels(label_values)
                lines.append(f"{self.name}_sum{plain} {series['sum']}")
                lines.append(f"{self.name}_count{plain} {series['count']}")
        return "\n".join(lines)


class _BoundHistogram:
    def __init__(self, parent: Histogram, key: tuple):
        self._parent = parent
        self._key = key

    def observe(self, value: float) -> None:
        self._parent._observe(self._key, value)


# =============================================================================
# Client Metrics
# =============================================================================

requests_total = Counter(
    name="resilient_client_requests_total",
    description="Total number of client requests by outcome",
    labels=["route", "outcome"],
)

request_latency_seconds = Histogram(
    name="resilient_client_request_latency_seconds",
    description="Latency of attempted requests including retries (rejections not timed)",
    labels=["route"],
)

retries_total = Counter(
    name="resilient_client_retries_total",
    description="Total number of retry attempts",
    labels=["route"],
)

circuit_state = Gauge(
    name="resilient_client_circuit_state",
    description="Circuit breaker state (0 closed, 1 half-open, 2 open)",
    labels=["route"],
)

fallbacks_total = Counter(
    name="resilient_client_fallbacks_total",
    description="Total number of fallback substitutions",
    labels=["route"],
)

_ALL_METRICS: list[_Metric] = [
    requests_total,
    request_latency_seconds,
    retries_total,
    circuit_state,
    fallbacks_total,
]


def generate_metrics() -> str:
    """Render all client metrics in Prometheus text format."""
    return "\n\n".join(metric.to_prometheus() for metric in _ALL_METRICS)


def reset_metrics() -> None:
    """Clear every recorded series."""
    for metric in _ALL_METRICS:
        metric.reset()
    logger.debug("Client metrics reset")
