"""Session endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from consul_discovery.core.exceptions import MalformedPayloadError
from consul_discovery.infra.discovery.models import SessionEntry

if TYPE_CHECKING:
    from consul_discovery.infra.discovery.client import ConsulClient

logger = logging.getLogger(__name__)


class _CreatedSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(alias="ID")


_CREATED = TypeAdapter(_CreatedSession)
_ENTRIES = TypeAdapter(list[SessionEntry])
_BOOL = TypeAdapter(bool)


class Session:
    """Create, inspect, renew and destroy Consul sessions."""

    def __init__(self, client: ConsulClient) -> None:
        self._client = client

    async def create(
        self,
        name: str | None = None,
        *,
        ttl: str | None = None,
        behavior: str | None = None,
        lock_delay: str | None = None,
        node: str | None = None,
        node_checks: list[str] | None = None,
        datacenter: str | None = None,
    ) -> str:
        """Create a session and return its ID.

        Args:
            name: Human-readable session name.
            ttl: Session TTL such as "30s"; the session is invalidated if not renewed.
            behavior: "release" or "delete", applied to held locks on invalidation.
            lock_delay: Lock delay duration such as "15s".
            node: Node the session belongs to. Defaults to the agent's node.
            node_checks: Node health checks tied to the session.
            datacenter: Datacenter to create the session in.
        """
        payload: dict[str, Any] = {
            "Name": name,
            "TTL": ttl,
            "Behavior": behavior,
            "LockDelay": lock_delay,
            "Node": node,
            "NodeChecks": node_checks,
        }
        body = self._client.encode_json(
            {key: value for key, value in payload.items() if value is not None},
            operation="session_create",
        )
        response = await self._client.request(
            "PUT",
            "/v1/session/create",
            operation="session_create",
            params=self._client.datacenter_params(datacenter),
            content=body,
        )
        session_id = self._client.decode(response, _CREATED, operation="session_create").id
        logger.debug("Session created", extra={"session_id": session_id, "session_name": name})
        return session_id

    async def destroy(self, session_id: str, datacenter: str | None = None) -> bool:
        """Destroy a session, releasing or deleting any locks it holds."""
        response = await self._client.request(
            "PUT",
            f"/v1/session/destroy/{quote(session_id, safe='')}",
            operation="session_destroy",
            params=self._client.datacenter_params(datacenter),
        )
        return self._client.decode(response, _BOOL, operation="session_destroy")

    async def info(self, session_id: str, datacenter: str | None = None) -> SessionEntry | None:
        """Return a session, or None if it does not exist."""
        response = await self._client.request(
            "GET",
            f"/v1/session/info/{quote(session_id, safe='')}",
            operation="session_info",
            params=self._client.datacenter_params(datacenter),
        )
        entries = self._client.decode(response, _ENTRIES, operation="session_info")
        return entries[0] if entries else None

    async def list(self, datacenter: str | None = None) -> list[SessionEntry]:
        """Return all active sessions."""
        response = await self._client.request(
            "GET",
            "/v1/session/list",
            operation="session_list",
            params=self._client.datacenter_params(datacenter),
        )
        return self._client.decode(response, _ENTRIES, operation="session_list")

    async def renew(self, session_id: str, datacenter: str | None = None) -> SessionEntry:
        """Reset a session's TTL.

        Raises:
            ConsulHTTPError: 404 when the session has already been invalidated.
        """
        response = await self._client.request(
            "PUT",
            f"/v1/session/renew/{quote(session_id, safe='')}",
            operation="session_renew",
            params=self._client.datacenter_params(datacenter),
        )
        # Consul answers an unknown session with a plain-text 404
        self._client.ensure_success(response, operation="session_renew")
        entries = self._client.decode(response, _ENTRIES, operation="session_renew")
        if not entries:
            raise MalformedPayloadError(response.text, status_code=response.status_code, reason="Empty array received")
        return entries[0]
