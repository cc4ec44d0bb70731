"""Prometheus registry and shared bucket definitions."""

from __future__ import annotations

from prometheus_client import CollectorRegistry

# Dedicated registry so that embedding applications choose whether to expose it
REGISTRY = CollectorRegistry()

# Blocking queries legitimately stay open for up to the wait duration (default 10m)
LONG_POLL_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.05,
    0.1,
    0.5,
    1.0,
    5.0,
    30.0,
    60.0,
    300.0,
    600.0,
    900.0,
)
