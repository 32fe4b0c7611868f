"""Shared fixtures: a recording Signal K host and a controllable clock."""

from __future__ import annotations

from typing import Any

import pytest

from helpers import FakeClock
from signalk_mob.host import SubscriptionError, SubscriptionHandle


class FakeSubscription:
    def __init__(self, spec: dict, on_delta, on_error) -> None:
        self.spec = spec
        self.on_delta = on_delta
        self.on_error = on_error
        self.handle = SubscriptionHandle(self._cancel)
        self.cancel_count = 0

    @property
    def paths(self) -> list[str]:
        return [entry["path"] for entry in self.spec["subscribe"]]

    def _cancel(self) -> None:
        self.cancel_count += 1


class FakeHost:
    """Records every interaction; deltas are pushed with :meth:`deliver`."""

    def __init__(self) -> None:
        self.subscriptions: list[FakeSubscription] = []
        self.published: list[tuple[str, dict]] = []
        self.resources: list[tuple[str, str, dict]] = []
        self.errors: list[Exception] = []
        self.provider_errors: list[str] = []
        self.provider_statuses: list[str] = []
        self.values: dict[str, Any] = {}
        self.fail_paths: set[str] = set()
        self.raise_paths: set[str] = set()

    # ── SignalKHost ─────────────────────────────────────────────────

    def subscribe(self, spec, on_delta, on_error) -> SubscriptionHandle:
        sub = FakeSubscription(spec, on_delta, on_error)
        if self.raise_paths.intersection(sub.paths):
            raise SubscriptionError("subscribe refused")
        self.subscriptions.append(sub)
        if self.fail_paths.intersection(sub.paths):
            on_error(SubscriptionError("feed unavailable"))
        return sub.handle

    def publish(self, plugin_id: str, payload: dict) -> None:
        self.published.append((plugin_id, payload))

    def get_current_value(self, path: str) -> Any:
        return self.values.get(path)

    def create_resource(self, kind: str, resource_id: str, body: dict) -> None:
        self.resources.append((kind, resource_id, body))

    def report_error(self, error: Exception) -> None:
        self.errors.append(error)

    def set_provider_error(self, message: str) -> None:
        self.provider_errors.append(message)

    def set_provider_status(self, message: str) -> None:
        self.provider_statuses.append(message)

    # ── test helpers ────────────────────────────────────────────────

    def live(self, path: str) -> list[FakeSubscription]:
        return [
            s for s in self.subscriptions
            if path in s.paths and not s.handle.cancelled
        ]

    def deliver(self, path: str, delta: dict) -> None:
        """Push *delta* to every live subscription on *path*."""
        for sub in self.live(path):
            sub.on_delta(delta)

    def published_values(self) -> list[dict[str, Any]]:
        """Each publish flattened to ``{path: value}``."""
        result = []
        for _, payload in self.published:
            flat = {}
            for update in payload["updates"]:
                for entry in update["values"]:
                    flat[entry["path"]] = entry["value"]
            result.append(flat)
        return result


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
