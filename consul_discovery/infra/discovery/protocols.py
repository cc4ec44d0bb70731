"""Protocol definitions for service discovery.

This module defines:
- ServiceDiscoveryProtocol: the backend-agnostic lookup/subscribe contract
  that ConsulServiceDiscovery implements
- BlockingCatalogProtocol: the single blocking read the watch engine needs,
  which lets tests drive ServiceWatch with scripted catalogs
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from consul_discovery.infra.discovery.cancellation import CancellationToken, CompletionReason
    from consul_discovery.infra.discovery.models import IndexedResult, NodeService, Poll
    from consul_discovery.infra.discovery.result import DiscoveryResult

type NextHandler[I] = Callable[[DiscoveryResult[list[I]]], Awaitable[None] | None]
type CompletionHandler = Callable[[CompletionReason], Awaitable[None] | None]


@runtime_checkable
class ServiceDiscoveryProtocol[S, I](Protocol):
    """Contract for looking up and subscribing to service instances.

    Callers written against this protocol do not depend on the registry
    backend. ``S`` identifies a service (a name for Consul) and ``I`` is the
    instance record type.
    """

    async def lookup(self, service: S, *, timeout: float | None = None) -> list[I]:
        """Return a point-in-time list of instances.

        Args:
            service: Service to look up.
            timeout: Optional deadline in seconds.
        """
        ...

    def subscribe(
        self,
        service: S,
        on_next: NextHandler[I],
        on_complete: CompletionHandler,
    ) -> CancellationToken:
        """Start delivering instance snapshots for ``service``.

        Returns immediately. ``on_next`` receives each snapshot or failure in
        order; ``on_complete`` is called exactly once when the subscription
        ends.
        """
        ...


@runtime_checkable
class BlockingCatalogProtocol(Protocol):
    """The catalog read a ServiceWatch polls."""

    async def nodes(
        self,
        service_name: str,
        datacenter: str | None = None,
        poll: Poll | None = None,
    ) -> IndexedResult[list[NodeService]]:
        ...
