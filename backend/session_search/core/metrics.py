"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "sessrch_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "sessrch_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "sessrch_search_latency_seconds",
    "Time spent in the merge-and-rank engine",
    labelnames=("outcome",),
    registry=REGISTRY,
)

FUZZY_FAILURES = Counter(
    "sessrch_fuzzy_failures_total",
    "Fuzzy index operations that raised and were skipped",
    labelnames=("operation",),
    registry=REGISTRY,
)

REINDEX_TOTAL = Counter(
    "sessrch_reindex_total",
    "Session reindex attempts by trigger and outcome",
    labelnames=("trigger", "outcome"),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "sessrch_indexed_sessions",
    "Number of sessions present in the exact index",
    registry=REGISTRY,
)

DIRTY_SESSIONS = Gauge(
    "sessrch_dirty_sessions",
    "Number of session ids queued for reindex",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "SEARCH_LATENCY",
    "FUZZY_FAILURES",
    "REINDEX_TOTAL",
    "INDEX_SIZE",
    "DIRTY_SESSIONS",
    "metrics_response",
]
