"""Logging setup for applications using the Consul client.

Usage:
    from consul_discovery.infra.logging import setup_logging

    setup_logging()  # reads LOG_* settings
"""

from consul_discovery.infra.logging.config import configure_logging, setup_logging, shutdown
from consul_discovery.infra.logging.formatters import JSONFormatter

__all__ = [
    "JSONFormatter",
    "configure_logging",
    "setup_logging",
    "shutdown",
]
