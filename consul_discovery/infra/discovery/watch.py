"""Long-polling watch over the catalog membership of one service.

A ServiceWatch turns Consul blocking queries into a stream of notifications:

    Idle ──► Polling ──► Delivering ──► Polling (index = last X-Consul-Index)
                │
                └──► Retrying ──(retry interval)──► Polling (no index)
    any iteration ──(token cancelled)──► Cancelled

Invariants:
- One query in flight per watch; query k+1 starts only after the result of
  query k has been delivered (and, on failure, the retry interval elapsed).
- The cancellation token is checked once per iteration, right after the
  query returns. A cancelled watch does not deliver that query's result and
  calls ``on_complete`` exactly once.
- Failures are delivered to ``on_next`` and retried indefinitely. After a
  failure the next query carries no index; changes made while the agent was
  unreachable are only seen through the fresh snapshot.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from consul_discovery.core.exceptions import ConsulError
from consul_discovery.infra.discovery.cancellation import CancellationToken, CompletionReason
from consul_discovery.infra.discovery.metrics import (
    consul_watch_active_subscriptions,
    consul_watch_deliveries_total,
    consul_watch_retries_total,
)
from consul_discovery.infra.discovery.models import NodeService, Poll
from consul_discovery.infra.discovery.result import DiscoveryResult

if TYPE_CHECKING:
    from consul_discovery.infra.discovery.protocols import (
        BlockingCatalogProtocol,
        CompletionHandler,
        NextHandler,
    )

logger = logging.getLogger(__name__)

DEFAULT_WAIT = "10m"
DEFAULT_RETRY_INTERVAL = 5.0


class ServiceWatch:
    """Polling loop for a single subscription.

    Example:
        token = CancellationToken()
        watch = ServiceWatch(consul.catalog, "web", on_next, on_complete, token)
        task = asyncio.create_task(watch.run())
        ...
        token.cancel()  # on_complete(CANCELLATION_REQUESTED) follows
    """

    def __init__(
        self,
        catalog: BlockingCatalogProtocol,
        service_name: str,
        on_next: NextHandler[NodeService],
        on_complete: CompletionHandler,
        token: CancellationToken,
        *,
        datacenter: str | None = None,
        wait: str = DEFAULT_WAIT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the watch.

        Args:
            catalog: Object providing the blocking ``nodes()`` query.
            service_name: Service whose instances are watched.
            on_next: Receives each snapshot or failure, in order.
            on_complete: Receives the completion reason, exactly once.
            token: Cancellation flag shared with the subscriber.
            datacenter: Datacenter to query.
            wait: Blocking query wait sent after each successful poll.
            retry_interval: Seconds to back off after a failed poll.
            sleep: Coroutine used for the back-off; tests substitute it.
        """
        self._catalog = catalog
        self._service_name = service_name
        self._on_next = on_next
        self._on_complete = on_complete
        self._token = token
        self._datacenter = datacenter
        self._wait = wait
        self._retry_interval = retry_interval
        self._sleep = sleep
        self._completed = False

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def completed(self) -> bool:
        return self._completed

    async def run(self) -> None:
        """Poll until the token is cancelled or the task is cancelled.

        Task cancellation (used on shutdown) interrupts the in-flight query
        and completes the watch with SERVICE_DISCOVERY_UNAVAILABLE.
        """
        consul_watch_active_subscriptions.inc()
        logger.debug("Service watch started", extra={"service_name": self._service_name})

        poll: Poll | None = None
        try:
            while True:
                result, index = await self._query(poll)

                if self._token.is_cancelled:
                    logger.debug("Service watch cancelled", extra={"service_name": self._service_name})
                    await self.complete(CompletionReason.CANCELLATION_REQUESTED)
                    return

                await self._deliver(result)

                if result.success:
                    poll = Poll(index=index, wait=self._wait)
                    continue

                consul_watch_retries_total.labels(service=self._service_name).inc()
                logger.warning(
                    "Service watch query failed, retrying",
                    extra={
                        "service_name": self._service_name,
                        "retry_in": self._retry_interval,
                        "error": str(result.error),
                    },
                )
                poll = None
                await self._sleep(self._retry_interval)
        except asyncio.CancelledError:
            await self.complete(CompletionReason.SERVICE_DISCOVERY_UNAVAILABLE)
            raise
        finally:
            consul_watch_active_subscriptions.dec()

    async def complete(self, reason: CompletionReason) -> None:
        """Deliver the completion reason unless the watch has already completed."""
        if self._completed:
            return
        self._completed = True
        await self._invoke(self._on_complete, reason)

    async def _query(self, poll: Poll | None) -> tuple[DiscoveryResult[list[NodeService]], int | None]:
        try:
            index, instances = await self._catalog.nodes(self._service_name, self._datacenter, poll)
        except ConsulError as e:
            return DiscoveryResult.fail(e), None
        except Exception as e:
            logger.exception(
                "Unexpected error in service watch query",
                extra={"service_name": self._service_name},
            )
            return DiscoveryResult.fail(e), None
        return DiscoveryResult.ok(instances), index

    async def _deliver(self, result: DiscoveryResult[list[NodeService]]) -> None:
        outcome = "success" if result.success else "failure"
        consul_watch_deliveries_total.labels(service=self._service_name, outcome=outcome).inc()
        await self._invoke(self._on_next, result)

    async def _invoke(self, callback: Callable[[Any], Any], argument: Any) -> None:
        """Call a subscriber callback, awaiting it if it is a coroutine function."""
        try:
            outcome = callback(argument)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(
                "Service watch subscriber callback raised",
                extra={"service_name": self._service_name},
            )
