"""Consul API entities.

Field aliases follow the PascalCase JSON keys used by the Consul HTTP API;
Python code uses the snake_case attribute names.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, NamedTuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class CheckStatus(str, Enum):
    """Health check states in Consul."""

    CRITICAL = "critical"
    MAINTENANCE = "maintenance"
    PASSING = "passing"
    WARNING = "warning"


class ConsulModel(BaseModel):
    """Base model: accepts either aliases or field names, ignores unknown keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Check(ConsulModel):
    """Health check definition attached to a service registration."""

    check_id: str | None = Field(default=None, alias="CheckID")
    deregister_critical_service_after: str | None = Field(
        default=None, alias="DeregisterCriticalServiceAfter"
    )
    name: str | None = Field(default=None, alias="Name")
    notes: str | None = Field(default=None, alias="Notes")
    status: CheckStatus | None = Field(default=None, alias="Status")
    timeout: str | None = Field(default=None, alias="Timeout")
    ttl: str | None = Field(default=None, alias="TTL")


class Service(ConsulModel):
    """Service definition sent to ``/v1/agent/service/register``."""

    address: str | None = Field(default=None, alias="Address")
    checks: list[Check] | None = Field(default=None, alias="Checks")
    id: str | None = Field(default=None, alias="ID")
    meta: dict[str, str] | None = Field(default=None, alias="Meta")
    name: str | None = Field(default=None, alias="Name")
    port: int | None = Field(default=None, alias="Port")
    tags: list[str] | None = Field(default=None, alias="Tags")


class AgentService(ConsulModel):
    """Service as reported by the local agent (``/v1/agent/services``)."""

    id: str = Field(alias="ID")
    service: str = Field(alias="Service")
    address: str | None = Field(default=None, alias="Address")
    datacenter: str | None = Field(default=None, alias="Datacenter")
    meta: dict[str, str] | None = Field(default=None, alias="Meta")
    port: int | None = Field(default=None, alias="Port")
    tags: list[str] | None = Field(default=None, alias="Tags")


class NodeService(ConsulModel):
    """One instance of a service as listed by ``/v1/catalog/service/<name>``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    address: str | None = Field(default=None, alias="Address")
    datacenter: str | None = Field(default=None, alias="Datacenter")
    id: str | None = Field(default=None, alias="ID")
    node: str | None = Field(default=None, alias="Node")
    service_address: str | None = Field(default=None, alias="ServiceAddress")
    service_id: str = Field(alias="ServiceID")
    service_meta: dict[str, str] | None = Field(default=None, alias="ServiceMeta")
    service_name: str | None = Field(default=None, alias="ServiceName")
    service_port: int | None = Field(default=None, alias="ServicePort")
    service_tags: list[str] | None = Field(default=None, alias="ServiceTags")


class KVPair(ConsulModel):
    """Key-value entry. ``value`` holds decoded text once returned by KV.get()."""

    create_index: int = Field(default=0, alias="CreateIndex")
    modify_index: int = Field(default=0, alias="ModifyIndex")
    lock_index: int = Field(default=0, alias="LockIndex")
    flags: int = Field(default=0, alias="Flags")
    key: str = Field(alias="Key")
    value: str | None = Field(default=None, alias="Value")
    session: str | None = Field(default=None, alias="Session")


class SessionEntry(ConsulModel):
    """Session as returned by the ``/v1/session`` endpoints."""

    id: str = Field(alias="ID")
    name: str | None = Field(default=None, alias="Name")
    node: str | None = Field(default=None, alias="Node")
    lock_delay: int | None = Field(default=None, alias="LockDelay")
    behavior: str | None = Field(default=None, alias="Behavior")
    ttl: str | None = Field(default=None, alias="TTL")
    node_checks: list[str] | None = Field(default=None, alias="NodeChecks")
    service_checks: list[dict[str, Any]] | None = Field(default=None, alias="ServiceChecks")
    create_index: int = Field(default=0, alias="CreateIndex")
    modify_index: int = Field(default=0, alias="ModifyIndex")


@dataclass(frozen=True)
class Poll:
    """Blocking query parameters.

    Attributes:
        index: Last X-Consul-Index seen; the agent holds the request until the
            data set's index moves past it.
        wait: Maximum time the agent may hold the request, e.g. "10m".
    """

    index: int
    wait: str | None = None


class IndexedResult(NamedTuple, Generic[T]):
    """Value decoded from a read, paired with the response's X-Consul-Index."""

    index: int
    value: T
