"""Exception hierarchy for Consul API operations.

Every error raised by the client derives from ConsulError so that callers
(and the watch engine) can treat the whole family uniformly:

    ConsulError
    ├── ConsulConnectionError     transport could not reach the agent
    ├── ConsulProtocolError       agent answered, but not as expected
    │   ├── ConsulHTTPError       unexpected HTTP status
    │   └── MissingIndexError     no usable X-Consul-Index header
    ├── MalformedPayloadError     body is not the JSON shape we asked for
    ├── EncodingError             request body could not be serialized
    ├── ValueDecodeError          KV value is not base64 encoded UTF-8
    └── LookupTimeoutError        one-shot lookup exceeded its deadline
"""

from __future__ import annotations

from typing import Any


class ConsulError(Exception):
    """Base Consul client exception.

    Attributes:
        detail: Human-readable error message.
        type: Machine-readable error type identifier.
        extra: Additional context about the error.
    """

    default_type = "consul-error"

    def __init__(
        self,
        detail: str,
        type: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.detail = detail
        self.type = type or self.default_type
        self.extra = extra or {}
        super().__init__(detail)


class ConsulConnectionError(ConsulError):
    """Raised when the Consul agent cannot be reached.

    Example:
            raise ConsulConnectionError(
            detail="Failed to connect to consul API @ 127.0.0.1:8500: refused",
            extra={"host": "127.0.0.1", "port": 8500},
        )
    """

    default_type = "connection-failed"


class ConsulProtocolError(ConsulError):
    """Raised when the agent responds in a way the client cannot use."""

    default_type = "protocol-error"


class ConsulHTTPError(ConsulProtocolError):
    """Raised for an unexpected HTTP status code."""

    default_type = "http-response-error"

    def __init__(
        self,
        status_code: int,
        response_text: str = "",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_text = response_text
        detail = f"Consul responded with HTTP {status_code}"
        if response_text:
            detail = f"{detail}: {response_text[:200]}"
        super().__init__(detail, extra=extra)


class MissingIndexError(ConsulProtocolError):
    """Raised when a blocking-query response carries no X-Consul-Index."""

    default_type = "missing-index"

    def __init__(self, detail: str = "Consul response has no index", extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail, extra=extra)


class MalformedPayloadError(ConsulError):
    """Raised when a response body does not decode to the expected shape.

    The raw response text is kept so that plain-text errors returned by the
    agent (e.g. "Missing service name") are visible to the caller.
    """

    default_type = "malformed-payload"

    def __init__(
        self,
        raw: str,
        status_code: int | None = None,
        reason: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.raw = raw
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"Consul response '{raw}' is not a valid JSON", extra=extra)


class EncodingError(ConsulError):
    """Raised when a request body cannot be serialized before sending."""

    default_type = "encoding-failed"


class ValueDecodeError(ConsulError):
    """Raised when a KV value cannot be decoded from base64 into text."""

    default_type = "value-decode-failed"

    def __init__(self, value: str, extra: dict[str, Any] | None = None) -> None:
        self.value = value
        super().__init__(f"Failed to decode KV value '{value}'", extra=extra)


class LookupTimeoutError(ConsulError):
    """Raised when a one-shot lookup does not finish before its deadline."""

    default_type = "lookup-timeout"
