"""Consul-backed implementation of the service discovery contract.

ConsulServiceDiscovery adapts the catalog API to ServiceDiscoveryProtocol:
- ``lookup()`` issues one non-blocking catalog query
- ``subscribe()`` starts a ServiceWatch task and returns its cancellation token
- ``close()`` stops every live watch and releases the client it created
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from consul_discovery.core.exceptions import LookupTimeoutError
from consul_discovery.infra.discovery.cancellation import CancellationToken, CompletionReason
from consul_discovery.infra.discovery.client import ConsulClient
from consul_discovery.infra.discovery.watch import ServiceWatch

if TYPE_CHECKING:
    from consul_discovery.core.settings.consul import ConsulSettings
    from consul_discovery.infra.discovery.models import NodeService
    from consul_discovery.infra.discovery.protocols import CompletionHandler, NextHandler

logger = logging.getLogger(__name__)


class ConsulServiceDiscovery:
    """Service discovery over the Consul catalog.

    Services are identified by name; instances are NodeService records.

    Example:
        async with ConsulServiceDiscovery() as discovery:
            instances = await discovery.lookup("web")

            token = discovery.subscribe(
                "web",
                on_next=lambda result: print(result.data if result else result.error),
                on_complete=lambda reason: print("done:", reason),
            )
            ...
            token.cancel()
    """

    default_lookup_timeout: float = 1.0

    def __init__(
        self,
        client: ConsulClient | None = None,
        *,
        settings: ConsulSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the discovery facade.

        Args:
            client: Consul client to use. If None, one is created from
                ``settings`` and closed by ``close()``.
            settings: Settings for the client created when ``client`` is None.
            sleep: Back-off coroutine handed to each watch.
        """
        self._client = client if client is not None else ConsulClient(settings)
        self._owns_client = client is None
        self._sleep = sleep
        self._watches: dict[asyncio.Task[None], ServiceWatch] = {}
        self._closed = False

    @property
    def client(self) -> ConsulClient:
        return self._client

    @property
    def active_subscriptions(self) -> int:
        """Number of watches whose polling task is still running."""
        return len(self._watches)

    async def lookup(self, service: str, *, timeout: float | None = None) -> list[NodeService]:
        """Return the current instances of ``service``.

        Errors from the catalog query propagate unchanged.

        Args:
            service: Service name.
            timeout: Optional deadline in seconds; see ``default_lookup_timeout``.

        Raises:
            LookupTimeoutError: If ``timeout`` elapsed first.
            ConsulError: Any error raised by the catalog query.
            RuntimeError: If the facade has been closed.
        """
        if self._closed:
            raise RuntimeError("ConsulServiceDiscovery is closed")

        if timeout is None:
            return (await self._client.catalog.nodes(service)).value

        try:
            async with asyncio.timeout(timeout):
                result = await self._client.catalog.nodes(service)
        except TimeoutError as e:
            raise LookupTimeoutError(
                f"Lookup of service {service!r} did not complete within {timeout}s",
                extra={"service_name": service, "timeout": timeout},
            ) from e
        return result.value

    def subscribe(
        self,
        service: str,
        on_next: NextHandler[NodeService],
        on_complete: CompletionHandler,
    ) -> CancellationToken:
        """Start watching ``service`` and return immediately.

        Must be called from within a running event loop.

        Args:
            service: Service name.
            on_next: Receives DiscoveryResult snapshots and failures in order.
            on_complete: Receives the CompletionReason exactly once.

        Returns:
            Token whose ``cancel()`` stops the watch after the in-flight query.

        Raises:
            RuntimeError: If the discovery instance has been closed.
        """
        if self._closed:
            raise RuntimeError("ConsulServiceDiscovery is closed")

        settings = self._client.settings
        token = CancellationToken()
        watch = ServiceWatch(
            self._client.catalog,
            service,
            on_next,
            on_complete,
            token,
            wait=settings.watch_wait,
            retry_interval=settings.watch_retry_interval,
            sleep=self._sleep,
        )
        task = asyncio.get_running_loop().create_task(watch.run(), name=f"consul-watch-{service}")
        self._watches[task] = watch
        task.add_done_callback(self._forget)

        logger.info("Subscribed to service", extra={"service_name": service})
        return token

    def _forget(self, task: asyncio.Task[None]) -> None:
        self._watches.pop(task, None)

    async def close(self) -> None:
        """Stop all watches and close the client if this instance created it.

        Running watches are interrupted and complete with
        SERVICE_DISCOVERY_UNAVAILABLE.
        """
        self._closed = True
        watches = dict(self._watches)

        for task, watch in watches.items():
            watch.token.cancel()
            task.cancel()
        if watches:
            await asyncio.gather(*watches, return_exceptions=True)
        # A task cancelled before its first step never entered run()
        for watch in watches.values():
            await watch.complete(CompletionReason.SERVICE_DISCOVERY_UNAVAILABLE)

        if self._owns_client:
            await self._client.close()

        logger.debug("ConsulServiceDiscovery closed", extra={"stopped_watches": len(watches)})

    async def __aenter__(self) -> ConsulServiceDiscovery:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
