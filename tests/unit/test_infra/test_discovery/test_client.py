"""Tests for the ConsulClient transport layer."""

from __future__ import annotations

import httpx
import pytest
from pydantic import TypeAdapter

from consul_discovery.core.exceptions import (
    ConsulConnectionError,
    ConsulHTTPError,
    EncodingError,
    MalformedPayloadError,
    MissingIndexError,
)
from consul_discovery.core.settings import ConsulSettings
from consul_discovery.infra.discovery import ConsulClient, Service
from consul_discovery.infra.discovery.client import INDEX_HEADER
from consul_discovery.infra.metrics import REGISTRY

_STRINGS = TypeAdapter(list[str])


def _client(handler, **settings) -> ConsulClient:
    return ConsulClient(ConsulSettings(**settings), transport=httpx.MockTransport(handler))


@pytest.mark.unit
@pytest.mark.asyncio
class TestRequest:
    """Test request sending and transport error mapping."""

    async def test_request_uses_base_url_and_token(self):
        """Test requests go to the configured agent with the ACL token."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        async with _client(handler, host="consul.local", port=8501, token="acl-token") as client:
            await client.request("GET", "/v1/catalog/services", operation="catalog_services")

        assert str(seen[0].url) == "http://consul.local:8501/v1/catalog/services"
        assert seen[0].headers["X-Consul-Token"] == "acl-token"

    async def test_empty_params_are_not_sent(self):
        """Test empty params produce no query string."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        async with _client(handler) as client:
            await client.request("GET", "/v1/agent/services", operation="agent_services", params={})

        assert seen[0].url.query == b""

    async def test_connection_error_is_mapped(self):
        """Test transport errors become ConsulConnectionError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(ConsulConnectionError) as exc_info:
                await client.request("GET", "/v1/agent/services", operation="agent_services")

        assert "Failed to connect to consul API @ 127.0.0.1:8500" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    async def test_timeout_is_mapped(self):
        """Test timeouts become ConsulConnectionError with type timeout."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(ConsulConnectionError) as exc_info:
                await client.request("GET", "/v1/agent/services", operation="agent_services")

        assert exc_info.value.type == "timeout"

    async def test_request_after_close_is_rejected(self):
        """Test a closed client raises ConsulConnectionError instead of sending."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        client = _client(handler)
        await client.close()

        with pytest.raises(ConsulConnectionError) as exc_info:
            await client.request("GET", "/v1/agent/services", operation="agent_services")

        assert exc_info.value.type == "client-closed"
        assert seen == []

    async def test_status_is_not_checked(self):
        """Test request returns error statuses without raising."""
        async with _client(lambda request: httpx.Response(500, text="boom")) as client:
            response = await client.request("GET", "/v1/agent/services", operation="agent_services")

        assert response.status_code == 500


@pytest.mark.unit
@pytest.mark.asyncio
class TestDecoding:
    """Test body decoding, status checks and index extraction."""

    async def _get(self, response: httpx.Response) -> tuple[ConsulClient, httpx.Response]:
        client = _client(lambda request: response)
        return client, await client.request("GET", "/v1/test", operation="test")

    async def test_decode_valid_body(self):
        """Test a valid JSON body is decoded into the target type."""
        client, response = await self._get(httpx.Response(200, json=["a", "b"]))

        assert client.decode(response, _STRINGS, operation="test") == ["a", "b"]
        await client.close()

    async def test_plain_text_body_is_malformed_payload(self):
        """Test a plain-text body raises MalformedPayloadError with the raw text."""
        client, response = await self._get(httpx.Response(400, text="Missing service name"))

        with pytest.raises(MalformedPayloadError) as exc_info:
            client.decode(response, _STRINGS, operation="test")

        assert exc_info.value.raw == "Missing service name"
        assert exc_info.value.status_code == 400
        await client.close()

    async def test_wrong_shape_is_malformed_payload(self):
        """Test JSON of the wrong shape raises MalformedPayloadError."""
        client, response = await self._get(httpx.Response(200, json={"not": "a list"}))

        with pytest.raises(MalformedPayloadError):
            client.decode(response, _STRINGS, operation="test")
        await client.close()

    async def test_json_error_status_raises_http_error(self):
        """Test a JSON body with an error status raises ConsulHTTPError."""
        client, response = await self._get(httpx.Response(403, json=["denied"]))

        with pytest.raises(ConsulHTTPError) as exc_info:
            client.decode(response, _STRINGS, operation="test")

        assert exc_info.value.status_code == 403
        await client.close()

    async def test_ensure_success(self):
        """Test ensure_success raises with the response text on error."""
        client, response = await self._get(httpx.Response(404, text="Unknown service"))

        with pytest.raises(ConsulHTTPError) as exc_info:
            client.ensure_success(response, operation="test")

        assert exc_info.value.response_text == "Unknown service"
        await client.close()

    async def test_change_index(self):
        """Test the X-Consul-Index header is parsed."""
        client, response = await self._get(httpx.Response(200, headers={INDEX_HEADER: "42"}))

        assert client.change_index(response, operation="test") == 42
        await client.close()

    @pytest.mark.parametrize("headers", [{}, {INDEX_HEADER: "abc"}])
    async def test_missing_or_invalid_index(self, headers):
        """Test a missing or non-numeric index raises MissingIndexError."""
        client, response = await self._get(httpx.Response(200, headers=headers))

        with pytest.raises(MissingIndexError):
            client.change_index(response, operation="test")
        await client.close()


@pytest.mark.unit
class TestEncoding:
    """Test request body serialization."""

    def test_encode_uses_api_field_names(self):
        """Test models are encoded with API field names and no unset fields."""
        client = ConsulClient(ConsulSettings())

        body = client.encode(Service(id="web-1", name="web", port=8080), operation="register_service")

        assert body == b'{"ID":"web-1","Name":"web","Port":8080}'

    def test_encode_json_rejects_unserializable(self):
        """Test unserializable values raise EncodingError."""
        client = ConsulClient(ConsulSettings())

        with pytest.raises(EncodingError):
            client.encode_json({"value": object()}, operation="test")

    def test_datacenter_params_fall_back_to_settings(self):
        """Test an explicit datacenter wins over the configured one."""
        assert ConsulClient(ConsulSettings()).datacenter_params(None) == {}
        assert ConsulClient(ConsulSettings()).datacenter_params("dc2") == {"dc": "dc2"}

        client = ConsulClient(ConsulSettings(datacenter="dc1"))
        assert client.datacenter_params(None) == {"dc": "dc1"}
        assert client.datacenter_params("dc2") == {"dc": "dc2"}


@pytest.mark.unit
@pytest.mark.asyncio
class TestMetrics:
    """Test Prometheus instrumentation of requests."""

    @staticmethod
    def _sample(name: str, labels: dict[str, str]) -> float:
        return REGISTRY.get_sample_value(name, labels) or 0.0

    async def test_successful_request_is_counted(self):
        """Test successful requests increment the request counter."""
        labels = {"operation": "metrics_ok", "status": "2xx"}
        before = self._sample("consul_requests_total", labels)

        async with _client(lambda request: httpx.Response(200)) as client:
            await client.request("GET", "/v1/agent/services", operation="metrics_ok")

        assert self._sample("consul_requests_total", labels) == before + 1
        assert self._sample("consul_request_duration_seconds_count", {"operation": "metrics_ok"}) >= 1

    async def test_connection_error_is_counted(self):
        """Test connection failures increment the error counter."""
        labels = {"operation": "metrics_down", "error_type": "connection"}
        before = self._sample("consul_errors_total", labels)

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(ConsulConnectionError):
                await client.request("GET", "/v1/agent/services", operation="metrics_down")

        assert self._sample("consul_errors_total", labels) == before + 1
