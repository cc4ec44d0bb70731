"""Result type delivered to watch subscribers.

A subscription produces an open-ended sequence of snapshots and failures, so
each delivery is a value rather than a raised exception.

Usage:
    def on_next(result: DiscoveryResult[list[NodeService]]) -> None:
        if result.success:
            update_pool(result.data)
        else:
            logger.warning("Discovery failed: %s", result.error)
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DiscoveryResult[T]:
    """Either a value or the exception that prevented producing it.

    Attributes:
        success: Whether the query succeeded.
        data: The value (None on failure).
        error: The exception (None on success).
    """

    success: bool
    data: T | None = None
    error: Exception | None = None

    @classmethod
    def ok(cls, data: T) -> DiscoveryResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: Exception) -> DiscoveryResult[T]:
        """Create a failure result."""
        return cls(success=False, error=error)

    def unwrap(self) -> T:
        """Return the value or raise the stored exception."""
        if not self.success:
            assert self.error is not None
            raise self.error
        return self.data  # type: ignore[return-value]

    def __bool__(self) -> bool:
        """Allow using result in boolean context."""
        return self.success
