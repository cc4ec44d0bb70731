"""Consul service discovery infrastructure.

This package provides:
- An async client for the agent, catalog, KV and session HTTP APIs
- Blocking-query watches that stream catalog membership changes
- A backend-agnostic lookup/subscribe facade
- OpenTelemetry tracing and Prometheus metrics
- An in-memory agent for testing

Key characteristics:
- Watch failures are delivered, never fatal; the loop retries after a fixed interval
- Cancellation is cooperative and completes each subscription exactly once

Usage:
    from consul_discovery.infra.discovery import ConsulServiceDiscovery

    async with ConsulServiceDiscovery() as discovery:
        instances = await discovery.lookup("web")
        token = discovery.subscribe("web", on_next, on_complete)
        ...
        token.cancel()

Configuration:
    # Environment variables
    CONSUL_HTTP_ADDR=http://consul.service.consul:8500
    CONSUL_TOKEN=...
    CONSUL_WATCH_WAIT=10m

Testing:
    from consul_discovery.infra.discovery import ConsulClient, MockConsulAgent

    agent = MockConsulAgent()
    client = ConsulClient(transport=agent.transport())
"""

from consul_discovery.infra.discovery.cancellation import CancellationToken, CompletionReason
from consul_discovery.infra.discovery.client import ConsulClient
from consul_discovery.infra.discovery.mock_agent import MockConsulAgent
from consul_discovery.infra.discovery.models import (
    AgentService,
    Check,
    CheckStatus,
    IndexedResult,
    KVPair,
    NodeService,
    Poll,
    Service,
    SessionEntry,
)
from consul_discovery.infra.discovery.protocols import BlockingCatalogProtocol, ServiceDiscoveryProtocol
from consul_discovery.infra.discovery.result import DiscoveryResult
from consul_discovery.infra.discovery.service import ConsulServiceDiscovery
from consul_discovery.infra.discovery.watch import ServiceWatch

__all__ = [
    # Protocols
    "BlockingCatalogProtocol",
    "ServiceDiscoveryProtocol",
    # Client
    "ConsulClient",
    "MockConsulAgent",
    # Discovery
    "CancellationToken",
    "CompletionReason",
    "ConsulServiceDiscovery",
    "DiscoveryResult",
    "ServiceWatch",
    # Models
    "AgentService",
    "Check",
    "CheckStatus",
    "IndexedResult",
    "KVPair",
    "NodeService",
    "Poll",
    "Service",
    "SessionEntry",
]
