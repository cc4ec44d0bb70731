"""Local agent endpoints: service registration and TTL health checks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

from pydantic import TypeAdapter

from consul_discovery.infra.discovery.models import AgentService, CheckStatus, Service

if TYPE_CHECKING:
    from consul_discovery.infra.discovery.client import ConsulClient

logger = logging.getLogger(__name__)

_AGENT_SERVICES = TypeAdapter(dict[str, AgentService])

# Consul's TTL update endpoints are named after the verb, not the resulting state
_CHECK_VERBS = {
    CheckStatus.PASSING: "pass",
    CheckStatus.WARNING: "warn",
    CheckStatus.CRITICAL: "fail",
}


class Agent:
    """Operations against the local Consul agent."""

    def __init__(self, client: ConsulClient) -> None:
        self._client = client

    async def register_service(self, service: Service) -> None:
        """Register a new service via the local agent.

        Re-registering an existing ID replaces the previous definition, which
        is how a running instance changes its port or tags.

        Args:
            service: Service definition to register.

        Raises:
            EncodingError: If the definition cannot be serialized.
            ConsulHTTPError: If the agent rejects the registration.
            ConsulConnectionError: If the agent is unreachable.
        """
        logger.debug("Registering service", extra={"service_id": service.id, "service_name": service.name})
        body = self._client.encode(service, operation="register_service")
        response = await self._client.request(
            "PUT",
            "/v1/agent/service/register",
            operation="register_service",
            content=body,
        )
        self._client.ensure_success(response, operation="register_service")
        logger.info(
            "Service registered with Consul",
            extra={
                "service_id": service.id,
                "service_name": service.name,
                "address": service.address,
                "port": service.port,
            },
        )

    async def deregister_service(self, service_id: str) -> None:
        """Deregister a service via the local agent.

        Args:
            service_id: The service instance ID to deregister.
        """
        response = await self._client.request(
            "PUT",
            f"/v1/agent/service/deregister/{quote(service_id, safe='')}",
            operation="deregister_service",
        )
        self._client.ensure_success(response, operation="deregister_service")
        logger.info("Service deregistered from Consul", extra={"service_id": service_id})

    async def check(self, check_id: str, status: CheckStatus, note: str | None = None) -> None:
        """Set the status of a TTL check and reset its TTL clock.

        Args:
            check_id: The check ID (typically "service:{service_id}").
            status: passing, warning or critical.
            note: Optional note shown in the check output.

        Raises:
            ValueError: For CheckStatus.MAINTENANCE, which a TTL update cannot set.
            ConsulHTTPError: 404 when the check is unknown to the agent.
        """
        verb = _CHECK_VERBS.get(status)
        if verb is None:
            raise ValueError(f"TTL checks cannot be set to {status.value!r}")

        operation = f"ttl_{verb}"
        response = await self._client.request(
            "PUT",
            f"/v1/agent/check/{verb}/{quote(check_id, safe='')}",
            operation=operation,
            params={"note": note} if note else None,
        )
        self._client.ensure_success(response, operation=operation)
        logger.debug("TTL %s sent to Consul", verb, extra={"check_id": check_id})

    async def pass_ttl(self, check_id: str, note: str | None = None) -> None:
        await self.check(check_id, CheckStatus.PASSING, note)

    async def warn_ttl(self, check_id: str, note: str | None = None) -> None:
        await self.check(check_id, CheckStatus.WARNING, note)

    async def fail_ttl(self, check_id: str, note: str | None = None) -> None:
        await self.check(check_id, CheckStatus.CRITICAL, note)

    async def services(self) -> dict[str, AgentService]:
        """Return the services registered with the local agent, keyed by ID."""
        response = await self._client.request("GET", "/v1/agent/services", operation="agent_services")
        return self._client.decode(response, _AGENT_SERVICES, operation="agent_services")
