"""Collaborator interface between the MOB engine and its Signal K host.

The engine never talks to the network directly: it subscribes, publishes
and reads current values through a :class:`SignalKHost`.
:class:`signalk_mob.connection.SignalKConnection` is the production
implementation; tests use a recording fake.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

DeltaHandler = Callable[[dict], None]
ErrorHandler = Callable[[Exception], None]


class SubscriptionError(Exception):
    """Raised (or passed to ``on_error``) when a feed cannot be established."""


class SubscriptionHandle:
    """Cancellation token for one subscription.

    ``cancel()`` runs the host's unsubscribe callback at most once and is
    safe to call on a handle that never became active.
    """

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None) -> None:
        self._on_cancel = on_cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callback, self._on_cancel = self._on_cancel, None
        if callback is not None:
            callback()


class SignalKHost(Protocol):
    """What the engine needs from the server it runs against."""

    def subscribe(
        self,
        spec: dict,
        on_delta: DeltaHandler,
        on_error: ErrorHandler,
    ) -> SubscriptionHandle:
        """Open a delta subscription described by a Signal K *spec*.

        After the returned handle is cancelled *on_delta* is never called
        again.
        """
        ...

    def publish(self, plugin_id: str, payload: dict) -> None:
        """Send a delta to the server, fire-and-forget."""
        ...

    def get_current_value(self, path: str) -> Any:
        """Latest known value of a ``vessels.self`` path, or ``None``."""
        ...

    def create_resource(self, kind: str, resource_id: str, body: dict) -> None:
        """Create or replace a resource, fire-and-forget."""
        ...

    def report_error(self, error: Exception) -> None:
        ...

    def set_provider_error(self, message: str) -> None:
        ...

    def set_provider_status(self, message: str) -> None:
        ...


def subscription_spec(paths: list[str], period_ms: int) -> dict:
    """Build a ``vessels.self`` subscription for *paths*."""
    return {
        "context": "vessels.self",
        "subscribe": [{"path": path, "period": period_ms} for path in paths],
    }
