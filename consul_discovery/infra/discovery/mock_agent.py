"""In-memory Consul agent for testing without a real Consul instance.

MockConsulAgent answers the HTTP API used by ConsulClient and keeps all state
in memory. It plugs into the client through an httpx transport, so the whole
request/decode path is exercised:

Usage in tests:
    from consul_discovery.infra.discovery.mock_agent import MockConsulAgent

    @pytest.fixture
    def agent():
        return MockConsulAgent()

    @pytest.fixture
    async def consul(agent):
        async with ConsulClient(ConsulSettings(), transport=agent.transport()) as client:
            yield client

    async def test_registration(agent, consul):
        await consul.agent.register_service(Service(id="web-1", name="web", port=8080))
        assert "web-1" in agent.services

The agent keeps a single modification index shared by all data. Catalog and
KV reads honour blocking queries: a request carrying ``index`` is held until
the index moves past it or ``wait`` elapses.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from consul_discovery.infra.discovery.client import INDEX_HEADER
from consul_discovery.infra.discovery.models import CheckStatus, Service
from consul_discovery.utils.duration import parse_duration

logger = logging.getLogger(__name__)

# Consul's default and maximum blocking query wait
DEFAULT_BLOCKING_WAIT = 300.0
MAX_BLOCKING_WAIT = 600.0

_SESSION_BODY = TypeAdapter(dict[str, Any])

_TTL_VERBS = {
    "pass": CheckStatus.PASSING,
    "warn": CheckStatus.WARNING,
    "fail": CheckStatus.CRITICAL,
}


@dataclass
class KVRecord:
    """Stored key with its raw value and bookkeeping indexes."""

    value: bytes
    flags: int = 0
    create_index: int = 0
    modify_index: int = 0
    lock_index: int = 0
    session: str | None = None


@dataclass
class SessionRecord:
    """Stored session."""

    id: str
    name: str = ""
    node: str = ""
    ttl: str = ""
    behavior: str = "release"
    lock_delay: int = 15_000_000_000
    node_checks: list[str] = field(default_factory=list)
    create_index: int = 0
    modify_index: int = 0


class MockConsulAgent:
    """In-memory Consul agent served through ``httpx.MockTransport``.

    Attributes:
        services: Registered services by service ID.
        ttl_states: TTL check states by check ID.
        check_notes: Last note sent with a TTL update, by check ID.
        kv: Stored keys.
        sessions: Active sessions by ID.
        requests: Every request received, for assertions.
        index: Current modification index.
    """

    def __init__(
        self,
        node: str = "mock-node",
        datacenter: str = "dc1",
        address: str = "127.0.0.1",
    ) -> None:
        self.node = node
        self.datacenter = datacenter
        self.address = address
        self.index = 1

        self.services: dict[str, Service] = {}
        self.ttl_states: dict[str, CheckStatus] = {}
        self.check_notes: dict[str, str] = {}
        self.kv: dict[str, KVRecord] = {}
        self.sessions: dict[str, SessionRecord] = {}
        self.requests: list[httpx.Request] = []

        self._faults: deque[Callable[[httpx.Request], httpx.Response]] = deque()
        self._changed: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        """Return a transport routing client requests to this agent."""
        return httpx.MockTransport(self.handle)

    def register(
        self,
        name: str,
        service_id: str | None = None,
        *,
        address: str | None = None,
        port: int | None = None,
        tags: list[str] | None = None,
        meta: dict[str, str] | None = None,
    ) -> Service:
        """Register a service directly, bypassing HTTP."""
        service = Service(
            id=service_id or name,
            name=name,
            address=address,
            port=port,
            tags=tags,
            meta=meta,
        )
        self._store_service(service)
        return service

    def deregister(self, service_id: str) -> None:
        """Remove a service directly, bypassing HTTP."""
        if self._drop_service(service_id):
            self._bump()

    def inject_connection_error(self, message: str = "Connection refused") -> None:
        """Make the next request fail at the transport level."""

        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError(message, request=request)

        self._faults.append(fail)

    def inject_response(
        self,
        status_code: int,
        content: str | bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        """Answer the next request with a canned response."""
        self._faults.append(lambda request: httpx.Response(status_code, content=content, headers=headers))

    def requests_to(self, path: str) -> list[httpx.Request]:
        """Return the recorded requests for one URL path."""
        return [request for request in self.requests if request.url.path == path]

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        """Route one request, as the HTTP API would."""
        self.requests.append(request)
        if self._faults:
            return self._faults.popleft()(request)

        dc = request.url.params.get("dc")
        if dc and dc != self.datacenter:
            return httpx.Response(500, text="No path to datacenter")

        method = request.method
        path = request.url.path

        if path.startswith("/v1/agent/"):
            return self._handle_agent(method, path.removeprefix("/v1/agent/"), request)
        if method == "GET" and path == "/v1/catalog/services":
            return self._json(self._catalog_services())
        if method == "GET" and path.startswith("/v1/catalog/service/"):
            name = path.removeprefix("/v1/catalog/service/")
            if not name:
                return httpx.Response(400, text="Missing service name")
            await self._block(request)
            return self._json(self._catalog_nodes(name))
        if path.startswith("/v1/kv/"):
            return await self._handle_kv(method, path.removeprefix("/v1/kv/"), request)
        if path.startswith("/v1/session/"):
            return self._handle_session(method, path.removeprefix("/v1/session/"), request)

        return httpx.Response(404, text=f"Unsupported endpoint: {method} {path}")

    def _handle_agent(self, method: str, route: str, request: httpx.Request) -> httpx.Response:
        if method == "GET" and route == "services":
            return self._json(
                {
                    service_id: {
                        "ID": service_id,
                        "Service": service.name,
                        "Address": service.address or "",
                        "Port": service.port or 0,
                        "Tags": service.tags or [],
                        "Meta": service.meta or {},
                        "Datacenter": self.datacenter,
                    }
                    for service_id, service in self.services.items()
                }
            )

        if method == "PUT" and route == "service/register":
            try:
                service = Service.model_validate_json(request.content)
            except ValidationError as e:
                return httpx.Response(400, text=f"Request decode failed: {e}")
            if not service.name:
                return httpx.Response(400, text="Missing service name")
            self._store_service(service)
            return httpx.Response(200)

        if method == "PUT" and route.startswith("service/deregister/"):
            service_id = route.removeprefix("service/deregister/")
            if not self._drop_service(service_id):
                return httpx.Response(404, text=f'Unknown service ID "{service_id}"')
            self._bump()
            return httpx.Response(200)

        if method == "PUT" and route.startswith("check/"):
            verb, _, check_id = route.removeprefix("check/").partition("/")
            status = _TTL_VERBS.get(verb)
            if status is None:
                return httpx.Response(404, text=f"Unsupported endpoint: {method} /v1/agent/{route}")
            if check_id not in self.ttl_states:
                return httpx.Response(404, text=f'CheckID "{check_id}" does not have associated TTL')
            self.ttl_states[check_id] = status
            note = request.url.params.get("note")
            if note:
                self.check_notes[check_id] = note
            return httpx.Response(200)

        return httpx.Response(404, text=f"Unsupported endpoint: {method} /v1/agent/{route}")

    async def _handle_kv(self, method: str, key: str, request: httpx.Request) -> httpx.Response:
        params = request.url.params

        if method == "GET":
            await self._block(request)
            if "keys" in params:
                keys = sorted(k for k in self.kv if k.startswith(key))
                if not keys:
                    return httpx.Response(404, headers=self._index_headers())
                return self._json(keys)
            record = self.kv.get(key)
            if record is None:
                return httpx.Response(404, headers=self._index_headers())
            return self._json([self._kv_entry(key, record)])

        if method == "PUT":
            return self._json(self._kv_put(key, request.content, params))

        if method == "DELETE":
            if "recurse" in params:
                doomed = [k for k in self.kv if k.startswith(key)]
            else:
                doomed = [key] if key in self.kv else []
            for k in doomed:
                del self.kv[k]
            if doomed:
                self._bump()
            return self._json(True)

        return httpx.Response(405, text=f"method {method} not allowed")

    def _kv_put(self, key: str, value: bytes, params: httpx.QueryParams) -> bool:
        record = self.kv.get(key)
        acquire = params.get("acquire")
        release = params.get("release")

        if acquire:
            if acquire not in self.sessions:
                return False
            if record is not None and record.session not in (None, acquire):
                return False
        if release and (record is None or record.session != release):
            return False

        self._bump()
        if record is None:
            record = KVRecord(value=value, create_index=self.index)
            self.kv[key] = record
        record.value = value
        record.modify_index = self.index
        if "flags" in params:
            record.flags = int(params["flags"])
        if acquire and record.session != acquire:
            record.session = acquire
            record.lock_index += 1
        if release:
            record.session = None
        return True

    def _handle_session(self, method: str, route: str, request: httpx.Request) -> httpx.Response:
        if method == "PUT" and route == "create":
            try:
                body = _SESSION_BODY.validate_json(request.content) if request.content else {}
            except ValidationError as e:
                return httpx.Response(400, text=f"Request decode failed: {e}")
            self._bump()
            record = SessionRecord(
                id=str(uuid.uuid4()),
                name=body.get("Name", ""),
                node=body.get("Node", self.node),
                ttl=body.get("TTL", ""),
                behavior=body.get("Behavior", "release"),
                node_checks=body.get("NodeChecks", ["serfHealth"]),
                create_index=self.index,
                modify_index=self.index,
            )
            if "LockDelay" in body:
                record.lock_delay = int(parse_duration(body["LockDelay"]) * 1_000_000_000)
            self.sessions[record.id] = record
            return self._json({"ID": record.id})

        if method == "GET" and route == "list":
            return self._json([self._session_entry(record) for record in self.sessions.values()])

        if method == "GET" and route.startswith("info/"):
            record = self.sessions.get(route.removeprefix("info/"))
            return self._json([self._session_entry(record)] if record else [])

        if method == "PUT" and route.startswith("renew/"):
            session_id = route.removeprefix("renew/")
            record = self.sessions.get(session_id)
            if record is None:
                return httpx.Response(404, text=f"Session id '{session_id}' not found")
            return self._json([self._session_entry(record)])

        if method == "PUT" and route.startswith("destroy/"):
            self._destroy_session(route.removeprefix("destroy/"))
            return self._json(True)

        return httpx.Response(404, text=f"Unsupported endpoint: {method} /v1/session/{route}")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _store_service(self, service: Service) -> None:
        service_id = service.id or service.name or ""
        self.services[service_id] = service.model_copy(update={"id": service_id})

        checks = service.checks or []
        for number, check in enumerate(checks, start=1):
            if not check.ttl:
                continue
            check_id = check.check_id or (
                f"service:{service_id}" if len(checks) == 1 else f"service:{service_id}:{number}"
            )
            self.ttl_states.setdefault(check_id, check.status or CheckStatus.CRITICAL)

        self._bump()
        logger.debug("MockConsulAgent: registered service %s", service_id)

    def _drop_service(self, service_id: str) -> bool:
        if self.services.pop(service_id, None) is None:
            return False
        prefix = f"service:{service_id}"
        for check_id in [c for c in self.ttl_states if c == prefix or c.startswith(f"{prefix}:")]:
            del self.ttl_states[check_id]
            self.check_notes.pop(check_id, None)
        logger.debug("MockConsulAgent: deregistered service %s", service_id)
        return True

    def _destroy_session(self, session_id: str) -> None:
        record = self.sessions.pop(session_id, None)
        if record is None:
            return
        for key, entry in list(self.kv.items()):
            if entry.session != session_id:
                continue
            if record.behavior == "delete":
                del self.kv[key]
            else:
                entry.session = None
        self._bump()

    def _bump(self) -> None:
        """Advance the index and wake blocked queries."""
        self.index += 1
        if self._changed is not None:
            self._changed.set()
            self._changed = None

    async def _block(self, request: httpx.Request) -> None:
        """Hold a blocking query until the index passes the requested one."""
        params = request.url.params
        try:
            index = int(params["index"])
        except (KeyError, ValueError):
            return

        wait = parse_duration(params["wait"]) if "wait" in params else DEFAULT_BLOCKING_WAIT
        loop = asyncio.get_running_loop()
        deadline = loop.time() + min(wait, MAX_BLOCKING_WAIT)

        while self.index <= index:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            if self._changed is None:
                self._changed = asyncio.Event()
            try:
                async with asyncio.timeout(remaining):
                    await self._changed.wait()
            except TimeoutError:
                return

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    def _index_headers(self) -> dict[str, str]:
        return {INDEX_HEADER: str(self.index)}

    def _json(self, payload: Any) -> httpx.Response:
        return httpx.Response(200, json=payload, headers=self._index_headers())

    def _catalog_services(self) -> dict[str, list[str]]:
        catalog: dict[str, set[str]] = {}
        for service in self.services.values():
            catalog.setdefault(service.name or "", set()).update(service.tags or [])
        return {name: sorted(tags) for name, tags in catalog.items()}

    def _catalog_nodes(self, name: str) -> list[dict[str, Any]]:
        return [
            {
                "ID": str(uuid.uuid5(uuid.NAMESPACE_DNS, self.node)),
                "Node": self.node,
                "Address": self.address,
                "Datacenter": self.datacenter,
                "ServiceID": service_id,
                "ServiceName": service.name,
                "ServiceAddress": service.address or "",
                "ServicePort": service.port or 0,
                "ServiceTags": service.tags or [],
                "ServiceMeta": service.meta or {},
            }
            for service_id, service in self.services.items()
            if service.name == name
        ]

    def _kv_entry(self, key: str, record: KVRecord) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "Key": key,
            "Value": base64.b64encode(record.value).decode("ascii") if record.value else None,
            "Flags": record.flags,
            "CreateIndex": record.create_index,
            "ModifyIndex": record.modify_index,
            "LockIndex": record.lock_index,
        }
        if record.session:
            entry["Session"] = record.session
        return entry

    def _session_entry(self, record: SessionRecord) -> dict[str, Any]:
        return {
            "ID": record.id,
            "Name": record.name,
            "Node": record.node,
            "LockDelay": record.lock_delay,
            "Behavior": record.behavior,
            "TTL": record.ttl,
            "NodeChecks": record.node_checks,
            "ServiceChecks": None,
            "CreateIndex": record.create_index,
            "ModifyIndex": record.modify_index,
        }
