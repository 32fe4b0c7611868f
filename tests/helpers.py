"""Test data builders shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock advanced by hand."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_delta(path: str, value: Any, timestamp: Optional[datetime] = None) -> dict:
    update: dict = {"values": [{"path": path, "value": value}]}
    if timestamp is not None:
        update["timestamp"] = timestamp.isoformat().replace("+00:00", "Z")
    return {"context": "vessels.self", "updates": [update]}


def position_delta(lat: float, lon: float, timestamp: Optional[datetime] = None) -> dict:
    return make_delta("navigation.position", {"latitude": lat, "longitude": lon}, timestamp)


def notification_delta(state: Optional[str], lat: float = 10.0, lon: float = 20.0) -> dict:
    value: dict = {"message": "Person overboard", "position": {"latitude": lat, "longitude": lon}}
    if state is not None:
        value["state"] = state
    return make_delta("notifications.mob", value)
