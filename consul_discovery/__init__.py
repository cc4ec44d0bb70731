"""Async Consul HTTP API client with long-polling service discovery."""

from consul_discovery.core.exceptions import (
    ConsulConnectionError,
    ConsulError,
    ConsulHTTPError,
    ConsulProtocolError,
    EncodingError,
    LookupTimeoutError,
    MalformedPayloadError,
    MissingIndexError,
    ValueDecodeError,
)
from consul_discovery.core.settings import ConsulSettings, get_consul_settings
from consul_discovery.infra.discovery import (
    CancellationToken,
    CompletionReason,
    ConsulClient,
    ConsulServiceDiscovery,
    DiscoveryResult,
    NodeService,
    Service,
)

__all__ = [
    "CancellationToken",
    "CompletionReason",
    "ConsulClient",
    "ConsulConnectionError",
    "ConsulError",
    "ConsulHTTPError",
    "ConsulProtocolError",
    "ConsulServiceDiscovery",
    "ConsulSettings",
    "DiscoveryResult",
    "EncodingError",
    "LookupTimeoutError",
    "MalformedPayloadError",
    "MissingIndexError",
    "NodeService",
    "Service",
    "ValueDecodeError",
    "get_consul_settings",
]
