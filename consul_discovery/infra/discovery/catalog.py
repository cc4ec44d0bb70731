"""Catalog endpoints, including the blocking query behind service watches."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter

from consul_discovery.infra.discovery.models import IndexedResult, NodeService, Poll
from consul_discovery.utils.duration import parse_duration

if TYPE_CHECKING:
    from consul_discovery.infra.discovery.client import ConsulClient

logger = logging.getLogger(__name__)

_SERVICE_TAGS = TypeAdapter(dict[str, list[str]])
_NODE_SERVICES = TypeAdapter(list[NodeService])

# Hold time the agent applies to a blocking query sent without ``wait``.
DEFAULT_SERVER_WAIT = "5m"


class Catalog:
    """Read access to the cluster-wide service catalog."""

    def __init__(self, client: ConsulClient) -> None:
        self._client = client

    async def services(self, datacenter: str | None = None) -> list[str]:
        """Return the names of the services registered in a datacenter.

        Args:
            datacenter: Datacenter to query. Defaults to the agent's datacenter.
        """
        response = await self._client.request(
            "GET",
            "/v1/catalog/services",
            operation="catalog_services",
            params=self._client.datacenter_params(datacenter),
        )
        return list(self._client.decode(response, _SERVICE_TAGS, operation="catalog_services"))

    async def nodes(
        self,
        service_name: str,
        datacenter: str | None = None,
        poll: Poll | None = None,
    ) -> IndexedResult[list[NodeService]]:
        """Return the instances providing a service, with the catalog index.

        Without ``poll`` the agent answers immediately. With ``poll`` the
        agent holds the request until the index moves past ``poll.index`` or
        ``poll.wait`` elapses, whichever comes first.

        Args:
            service_name: Name of the service to list.
            datacenter: Datacenter to query. Defaults to the agent's datacenter.
            poll: Blocking query parameters from a previous response.

        Returns:
            IndexedResult of the X-Consul-Index value and the instance list.

        Raises:
            MalformedPayloadError: If the body is not a JSON list of instances.
            ConsulHTTPError: If the agent returned a JSON error status.
            MissingIndexError: If the response lacks X-Consul-Index.
            ConsulConnectionError: If the agent is unreachable.
        """
        params = self._client.datacenter_params(datacenter)
        timeout = None
        if poll is not None:
            params["index"] = str(poll.index)
            if poll.wait:
                params["wait"] = poll.wait
            timeout = self._blocking_timeout(poll.wait or DEFAULT_SERVER_WAIT)

        response = await self._client.request(
            "GET",
            f"/v1/catalog/service/{quote(service_name, safe='')}",
            operation="catalog_service_nodes",
            params=params,
            timeout=timeout,
        )
        instances = self._client.decode(response, _NODE_SERVICES, operation="catalog_service_nodes")
        index = self._client.change_index(response, operation="catalog_service_nodes")
        return IndexedResult(index, instances)

    def _blocking_timeout(self, wait: str) -> httpx.Timeout:
        """Read timeout covering the wait plus the up-to-1/16 jitter Consul adds."""
        settings = self._client.settings
        wait_seconds = parse_duration(wait)
        read = wait_seconds + wait_seconds / 16 + settings.request_timeout
        return httpx.Timeout(read, connect=settings.connect_timeout)
