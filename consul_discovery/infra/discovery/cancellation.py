"""Cooperative cancellation for service watches."""

from __future__ import annotations

import threading
from enum import Enum


class CompletionReason(str, Enum):
    """Why a subscription stopped delivering results."""

    # cancel() was called on the subscription's token
    CANCELLATION_REQUESTED = "cancellation_requested"
    # the discovery instance was closed while the watch was running
    SERVICE_DISCOVERY_UNAVAILABLE = "service_discovery_unavailable"


class CancellationToken:
    """Caller-held handle that stops a subscription.

    ``cancel()`` only raises a flag. The watch observes it once per
    iteration, after the in-flight query returns, so completion may arrive
    up to one blocking-query wait later. The flag is a threading.Event,
    which makes ``cancel()`` safe to call from any thread.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Request cancellation. Calling it again has no further effect."""
        self._cancelled.set()

    def __repr__(self) -> str:
        return f"CancellationToken(is_cancelled={self.is_cancelled})"
