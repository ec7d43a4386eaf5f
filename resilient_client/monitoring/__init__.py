"""Monitoring for the resilient API client.

This module provides lightweight Prometheus-format metrics for
request outcomes, latency, retries, circuit state and fallbacks.
"""

from .metrics import (
    Counter,
    Gauge,
    Histogram,
    circuit_state,
    fallbacks_total,
    generate_metrics,
    request_latency_seconds,
    requests_total,
    reset_metrics,
    retries_total,
)

__all__ = [
    "Counter",
    "Gauge",
    "Histogram",
    "requests_total",
    "request_latency_seconds",
    "retries_total",
    "circuit_state",
    "fallbacks_total",
    "generate_metrics",
    "reset_metrics",
]
