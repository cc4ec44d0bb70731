"""Prometheus metrics for Consul API calls and service watches."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from consul_discovery.infra.metrics.prometheus import LONG_POLL_BUCKETS, REGISTRY

# ──────────────────────────────────────────────────────────────
# HTTP API metrics
# ──────────────────────────────────────────────────────────────

consul_requests_total = Counter(
    "consul_requests_total",
    "Total Consul HTTP API requests that received a response. "
    "Usage: Increment once per response, labelled by HTTP status class.",
    ["operation", "status"],  # status: 2xx, 4xx, 5xx
    registry=REGISTRY,
)

consul_request_duration_seconds = Histogram(
    "consul_request_duration_seconds",
    "Duration of Consul API requests in seconds, blocking queries included.",
    ["operation"],
    buckets=LONG_POLL_BUCKETS,
    registry=REGISTRY,
)

consul_errors_total = Counter(
    "consul_errors_total",
    "Total errors during Consul API operations. "
    "Usage: Increment when a request fails before or after the response.",
    [
        "operation",
        "error_type",
    ],  # error_type: timeout/connection/http_error/malformed_payload/missing_index/encoding
    registry=REGISTRY,
)

# ──────────────────────────────────────────────────────────────
# Watch metrics
# ──────────────────────────────────────────────────────────────

consul_watch_deliveries_total = Counter(
    "consul_watch_deliveries_total",
    "Results delivered to watch subscribers.",
    ["service", "outcome"],  # outcome: success, failure
    registry=REGISTRY,
)

consul_watch_retries_total = Counter(
    "consul_watch_retries_total",
    "Watch iterations that backed off after a failed query.",
    ["service"],
    registry=REGISTRY,
)

consul_watch_active_subscriptions = Gauge(
    "consul_watch_active_subscriptions",
    "Number of service watches currently polling.",
    registry=REGISTRY,
)
