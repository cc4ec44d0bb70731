"""Consul agent connection settings.

Environment variables use CONSUL_ prefix.
Example: CONSUL_HOST=consul.local, CONSUL_PORT=8500

The standard CONSUL_HTTP_ADDR variable understood by the consul CLI is
honoured as well; host, port and scheme are derived from it unless they are
set explicitly.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

from pydantic import Field, SecretStr, computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from consul_discovery.utils.duration import parse_duration

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8500


class ConsulSettings(BaseSettings):
    """Consul HTTP API client settings.

    Resolved once at construction; instances are frozen.
    """

    # ──────────────────────────────────────────────────────────────
    # Consul agent connection
    # ──────────────────────────────────────────────────────────────

    http_addr: str | None = Field(
        default=None,
        description="Agent address in CONSUL_HTTP_ADDR form, e.g. 'http://10.0.0.5:8500' or '10.0.0.5:8500'",
    )

    host: str = Field(
        default=DEFAULT_HOST,
        description="Consul agent hostname or IP address",
    )

    port: int = Field(
        default=DEFAULT_PORT,
        ge=1,
        le=65535,
        description="Consul agent HTTP API port",
    )

    scheme: str = Field(
        default="http",
        pattern=r"^https?$",
        description="HTTP scheme for Consul API (http or https)",
    )

    token: SecretStr | None = Field(
        default=None,
        description="Consul ACL token for authentication",
    )

    datacenter: str | None = Field(
        default=None,
        description="Consul datacenter (defaults to agent's datacenter)",
    )

    verify_ssl: bool = Field(
        default=True,
        description="Verify SSL certificates when using HTTPS",
    )

    connect_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=60.0,
        description="HTTP connection timeout in seconds",
    )

    request_timeout: float = Field(
        default=30.0,
        ge=0.1,
        le=600.0,
        description="Read timeout for non-blocking requests in seconds",
    )

    # ──────────────────────────────────────────────────────────────
    # Watch (blocking query) behaviour
    # ──────────────────────────────────────────────────────────────

    watch_wait: str = Field(
        default="10m",
        description="Wait duration sent with blocking queries (Go duration string)",
    )

    watch_retry_interval: float = Field(
        default=5.0,
        ge=0.0,
        le=3600.0,
        description="Delay in seconds before re-polling after a failed query",
    )

    # ──────────────────────────────────────────────────────────────
    # Validators
    # ──────────────────────────────────────────────────────────────

    @model_validator(mode="before")
    @classmethod
    def _apply_http_addr(cls, data: Any) -> Any:
        """Derive host, port and scheme from http_addr when not given explicitly."""
        if not isinstance(data, dict):
            return data

        addr = data.get("http_addr")
        if not addr:
            return data

        if "://" not in addr:
            addr = f"http://{addr}"
        parts = urlsplit(addr)

        resolved = dict(data)
        if parts.hostname and not data.get("host"):
            resolved["host"] = parts.hostname
        if not data.get("port"):
            try:
                port = parts.port
            except ValueError:
                port = None
            if port is not None:
                resolved["port"] = port
        if parts.scheme and not data.get("scheme"):
            resolved["scheme"] = parts.scheme
        return resolved

    @field_validator("watch_wait")
    @classmethod
    def _validate_watch_wait(cls, value: str) -> str:
        """Ensure the wait is a duration string Consul will accept."""
        parse_duration(value)
        return value

    # ──────────────────────────────────────────────────────────────
    # Computed properties
    # ──────────────────────────────────────────────────────────────

    @computed_field
    @property
    def base_url(self) -> str:
        """Build Consul agent base URL."""
        return f"{self.scheme}://{self.host}:{self.port}"

    # ──────────────────────────────────────────────────────────────
    # Helper methods
    # ──────────────────────────────────────────────────────────────

    def get_auth_headers(self) -> dict[str, str]:
        """Get HTTP headers for Consul API authentication.

        Returns:
            Dictionary with X-Consul-Token header if token is set.
        """
        if self.token:
            return {"X-Consul-Token": self.token.get_secret_value()}
        return {}

    model_config = SettingsConfigDict(
        env_prefix="CONSUL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )
