"""Key-value store endpoints."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

from pydantic import TypeAdapter

from consul_discovery.core.exceptions import MalformedPayloadError, ValueDecodeError
from consul_discovery.infra.discovery.models import KVPair

if TYPE_CHECKING:
    from consul_discovery.infra.discovery.client import ConsulClient

logger = logging.getLogger(__name__)

_KEYS = TypeAdapter(list[str])
_PAIRS = TypeAdapter(list[KVPair])
_BOOL = TypeAdapter(bool)


def _key_path(key: str) -> str:
    return f"/v1/kv/{quote(key, safe='/')}"


class KV:
    """Access to the Consul key-value store.

    Values are written as raw text and returned decoded; Consul transports
    them base64 encoded.
    """

    def __init__(self, client: ConsulClient) -> None:
        self._client = client

    async def keys(self, prefix: str = "", datacenter: str | None = None) -> list[str]:
        """List keys, optionally under a prefix.

        Args:
            prefix: Only return keys starting with this prefix.
            datacenter: Datacenter to query. Defaults to the agent's datacenter.

        Returns:
            Key names. An empty store (HTTP 404) yields an empty list.
        """
        params = {"keys": "", **self._client.datacenter_params(datacenter)}
        response = await self._client.request("GET", _key_path(prefix), operation="kv_keys", params=params)
        if response.status_code == 404:
            return []
        return self._client.decode(response, _KEYS, operation="kv_keys")

    async def get(self, key: str, datacenter: str | None = None) -> KVPair | None:
        """Read a single key.

        Args:
            key: Path of the key.
            datacenter: Datacenter to query. Defaults to the agent's datacenter.

        Returns:
            The entry with its value decoded to text, or None if the key does
            not exist.

        Raises:
            ValueDecodeError: If the stored value is not base64 encoded UTF-8.
            MalformedPayloadError: If the body is not a JSON list of entries.
        """
        response = await self._client.request(
            "GET",
            _key_path(key),
            operation="kv_get",
            params=self._client.datacenter_params(datacenter),
        )
        if response.status_code == 404 or not response.content:
            return None

        pairs = self._client.decode(response, _PAIRS, operation="kv_get")
        if not pairs:
            raise MalformedPayloadError(response.text, status_code=response.status_code, reason="Empty array received")

        pair = pairs[0]
        if pair.value is None:
            return pair

        try:
            text = base64.b64decode(pair.value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueDecodeError(pair.value, extra={"key": key}) from e
        return pair.model_copy(update={"value": text})

    async def put(
        self,
        key: str,
        value: str,
        datacenter: str | None = None,
        *,
        flags: int | None = None,
        acquire: str | None = None,
        release: str | None = None,
    ) -> bool:
        """Create or update a key.

        Args:
            key: Path of the key.
            value: Text to store.
            datacenter: Datacenter to write to.
            flags: Opaque unsigned integer stored with the key.
            acquire: Session ID acquiring a lock on the key.
            release: Session ID releasing its lock on the key.

        Returns:
            Consul's verdict: False when a lock acquire/release did not apply.
        """
        params = self._client.datacenter_params(datacenter)
        if flags is not None:
            params["flags"] = str(flags)
        if acquire:
            params["acquire"] = acquire
        if release:
            params["release"] = release

        response = await self._client.request(
            "PUT",
            _key_path(key),
            operation="kv_put",
            params=params,
            content=value.encode("utf-8"),
        )
        return self._client.decode(response, _BOOL, operation="kv_put")

    async def delete(self, key: str, datacenter: str | None = None, *, recurse: bool = False) -> bool:
        """Delete a key, or every key sharing the prefix when ``recurse`` is set."""
        params = self._client.datacenter_params(datacenter)
        if recurse:
            params["recurse"] = "true"

        response = await self._client.request("DELETE", _key_path(key), operation="kv_delete", params=params)
        return self._client.decode(response, _BOOL, operation="kv_delete")
