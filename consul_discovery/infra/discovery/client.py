"""Consul HTTP API client with observability.

This module provides the transport layer shared by every endpoint group:
- Uses httpx for async HTTP operations
- Includes OpenTelemetry tracing for all API calls
- Records Prometheus metrics for monitoring
- Maps transport, status and payload problems onto ConsulError subclasses

Endpoint groups (agent, catalog, kv, session) build paths and parameters and
then call ``request()`` followed by ``decode()``/``ensure_success()``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
from opentelemetry import trace
from pydantic import BaseModel, TypeAdapter, ValidationError

from consul_discovery.core.exceptions import (
    ConsulConnectionError,
    ConsulHTTPError,
    EncodingError,
    MalformedPayloadError,
    MissingIndexError,
)
from consul_discovery.infra.discovery.agent import Agent
from consul_discovery.infra.discovery.catalog import Catalog
from consul_discovery.infra.discovery.kv import KV
from consul_discovery.infra.discovery.metrics import (
    consul_errors_total,
    consul_request_duration_seconds,
    consul_requests_total,
)
from consul_discovery.infra.discovery.session import Session

if TYPE_CHECKING:
    from consul_discovery.core.settings.consul import ConsulSettings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

INDEX_HEADER = "X-Consul-Index"

_ANY_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)


class ConsulClient:
    """Async client for the Consul HTTP API.

    Endpoint groups are exposed as attributes:

    - ``agent``: local agent service registration and TTL checks
    - ``catalog``: cluster-wide service catalog, including blocking queries
    - ``kv``: key-value store
    - ``session``: sessions used for locks and leader election

    Example:
        async with ConsulClient(get_consul_settings()) as consul:
            await consul.agent.register_service(
                Service(id="web-1", name="web", address="10.0.0.5", port=8080)
            )
            index, instances = await consul.catalog.nodes("web")

    Tests inject an ``httpx.MockTransport`` through ``transport``.
    """

    def __init__(
        self,
        settings: ConsulSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Consul client.

        Args:
            settings: ConsulSettings instance. If None, loads from environment.
            transport: Optional httpx transport replacing the network stack.
        """
        if settings is None:
            from consul_discovery.core.settings import get_consul_settings

            settings = get_consul_settings()

        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers=settings.get_auth_headers(),
            timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout),
            verify=settings.verify_ssl,
            transport=transport,
        )

        self.agent = Agent(self)
        self.catalog = Catalog(self)
        self.kv = KV(self)
        self.session = Session(self)

        logger.debug(
            "ConsulClient initialized",
            extra={"base_url": settings.base_url, "datacenter": settings.datacenter},
        )

    @property
    def settings(self) -> ConsulSettings:
        return self._settings

    def datacenter_params(self, datacenter: str | None) -> dict[str, str]:
        """Query parameters selecting a datacenter; empty when none is configured."""
        dc = datacenter or self._settings.datacenter
        return {"dc": dc} if dc else {}

    async def request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, str] | None = None,
        content: bytes | str | None = None,
        timeout: httpx.Timeout | None = None,
    ) -> httpx.Response:
        """Send one request to the agent.

        The status code is not checked here; callers decide which statuses
        are acceptable for their endpoint.

        Args:
            method: HTTP method.
            path: API path, e.g. "/v1/catalog/service/web".
            operation: Short operation name used for spans and metrics.
            params: Query parameters. Only non-empty parameters should be passed.
            content: Request body.
            timeout: Per-request timeout override (used by blocking queries).

        Returns:
            The httpx response.

        Raises:
            ConsulConnectionError: If the agent could not be reached, timed out,
                or the client has been closed.
        """
        if self._client.is_closed:
            raise ConsulConnectionError(
                "Consul client is closed",
                type="client-closed",
                extra={"operation": operation, "path": path},
            )

        start_time = time.perf_counter()

        with tracer.start_as_current_span(f"consul.{operation}") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("consul.path", path)

            try:
                response = await self._client.request(
                    method,
                    path,
                    params=params or None,
                    content=content,
                    timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
                )
            except httpx.TimeoutException as e:
                consul_request_duration_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start_time
                )
                span.record_exception(e)
                consul_errors_total.labels(operation=operation, error_type="timeout").inc()
                logger.warning(
                    "Consul request timed out",
                    extra={"operation": operation, "path": path, "error": str(e)},
                )
                raise ConsulConnectionError(
                    f"Request to consul API @ {self._settings.host}:{self._settings.port} timed out: {e}",
                    type="timeout",
                    extra={"operation": operation, "path": path},
                ) from e
            except httpx.TransportError as e:
                consul_request_duration_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start_time
                )
                span.record_exception(e)
                consul_errors_total.labels(operation=operation, error_type="connection").inc()
                logger.warning(
                    "Consul connection error",
                    extra={"operation": operation, "path": path, "error": str(e)},
                )
                raise ConsulConnectionError(
                    f"Failed to connect to consul API @ {self._settings.host}:{self._settings.port}: {e}",
                    extra={"operation": operation, "path": path},
                ) from e

            consul_request_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start_time
            )
            consul_requests_total.labels(
                operation=operation, status=f"{response.status_code // 100}xx"
            ).inc()
            span.set_attribute("http.status_code", response.status_code)
            if INDEX_HEADER in response.headers:
                span.set_attribute("consul.index", response.headers[INDEX_HEADER])

            logger.debug(
                "Consul %s %s -> %s",
                method,
                path,
                response.status_code,
                extra={"operation": operation},
            )
            return response

    def decode(self, response: httpx.Response, shape: TypeAdapter[T], *, operation: str) -> T:
        """Decode a JSON response body into ``shape``.

        The body is decoded before the status is checked so that plain-text
        error bodies surface as MalformedPayloadError with the raw text.

        Raises:
            MalformedPayloadError: If the body is not JSON of the expected shape.
            ConsulHTTPError: If the body is JSON but the status is not 2xx.
        """
        try:
            value = shape.validate_json(response.content)
        except ValidationError as e:
            consul_errors_total.labels(operation=operation, error_type="malformed_payload").inc()
            logger.warning(
                "Consul response is not valid JSON of the expected shape",
                extra={
                    "operation": operation,
                    "status_code": response.status_code,
                    "response": response.text[:200],
                },
            )
            raise MalformedPayloadError(
                response.text,
                status_code=response.status_code,
                reason=str(e),
                extra={"operation": operation},
            ) from e

        self.ensure_success(response, operation=operation)
        return value

    def ensure_success(self, response: httpx.Response, *, operation: str) -> None:
        """Raise ConsulHTTPError unless the response status is 2xx."""
        if response.is_success:
            return
        consul_errors_total.labels(operation=operation, error_type="http_error").inc()
        logger.warning(
            "Consul request failed",
            extra={
                "operation": operation,
                "status_code": response.status_code,
                "response": response.text[:200],
            },
        )
        raise ConsulHTTPError(
            response.status_code,
            response.text,
            extra={"operation": operation},
        )

    def change_index(self, response: httpx.Response, *, operation: str) -> int:
        """Read the X-Consul-Index header.

        Raises:
            MissingIndexError: If the header is absent or not an integer.
        """
        raw = response.headers.get(INDEX_HEADER)
        try:
            if raw is None:
                raise ValueError(raw)
            return int(raw)
        except ValueError:
            consul_errors_total.labels(operation=operation, error_type="missing_index").inc()
            detail = "Consul response has no index" if raw is None else f"Consul index {raw!r} is not an integer"
            raise MissingIndexError(detail, extra={"operation": operation}) from None

    def encode(self, model: BaseModel, *, operation: str) -> bytes:
        """Serialize a request entity to JSON using the API's field names.

        Raises:
            EncodingError: If the entity cannot be serialized.
        """
        try:
            return model.model_dump_json(by_alias=True, exclude_none=True).encode()
        except ValueError as e:
            consul_errors_total.labels(operation=operation, error_type="encoding").inc()
            raise EncodingError(
                f"Failed to encode request body: {e}",
                extra={"operation": operation},
            ) from e

    def encode_json(self, payload: Any, *, operation: str) -> bytes:
        """Serialize a plain JSON payload (dicts/lists of primitives)."""
        try:
            return _ANY_ADAPTER.dump_json(payload)
        except ValueError as e:
            consul_errors_total.labels(operation=operation, error_type="encoding").inc()
            raise EncodingError(
                f"Failed to encode request body: {e}",
                extra={"operation": operation},
            ) from e

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()
        logger.debug("ConsulClient closed")

    async def __aenter__(self) -> ConsulClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
