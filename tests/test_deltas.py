"""Tests for the deltas module."""

from datetime import datetime, timezone

import pytest

from signalk_mob.deltas import (
    MalformedDelta,
    build_delta,
    format_timestamp,
    iter_values,
    parse_notification,
    parse_position,
    parse_timestamp,
)
from signalk_mob.models import GeoPoint, MobState


def test_iter_values_flattens_updates() -> None:
    delta = {
        "updates": [
            {"timestamp": "2024-06-01T12:00:00.000Z",
             "values": [{"path": "a", "value": 1}, {"path": "b", "value": 2}]},
            {"values": [{"path": "c", "value": 3}]},
        ]
    }
    entries = list(iter_values(delta))
    assert [(e.path, e.value) for e in entries] == [("a", 1), ("b", 2), ("c", 3)]
    assert entries[0].timestamp == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    assert entries[2].timestamp is None


@pytest.mark.parametrize("delta", [
    None,
    "not a delta",
    {},
    {"updates": "nope"},
    {"updates": [None, {"values": None}, {"values": [{"value": 1}, "x"]}]},
])
def test_iter_values_skips_malformed(delta) -> None:
    """Partial or broken deltas yield nothing rather than raising."""
    assert list(iter_values(delta)) == []


def test_parse_timestamp_variants() -> None:
    assert parse_timestamp("2024-06-01T12:00:00Z") == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp("2024-06-01T14:00:00+02:00") == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp("2024-06-01T12:00:00").tzinfo is timezone.utc
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def test_parse_position() -> None:
    assert parse_position({"latitude": 10, "longitude": 20.5}) == GeoPoint(10.0, 20.5)
    assert parse_position({"latitude": 10}) is None
    assert parse_position({"latitude": "10", "longitude": 20}) is None
    assert parse_position({"latitude": 91, "longitude": 0}) is None
    assert parse_position({"latitude": True, "longitude": 0}) is None
    assert parse_position(None) is None


class TestParseNotification:
    """Tests for :func:`parse_notification`."""

    def test_emergency_with_position(self) -> None:
        state, pos = parse_notification(
            {"state": "emergency", "position": {"latitude": 10, "longitude": 20}}
        )
        assert state is MobState.EMERGENCY
        assert pos == GeoPoint(10.0, 20.0)

    def test_position_under_data(self) -> None:
        _, pos = parse_notification(
            {"state": "emergency", "data": {"position": {"latitude": 1, "longitude": 2}}}
        )
        assert pos == GeoPoint(1.0, 2.0)

    def test_normal_without_position(self) -> None:
        assert parse_notification({"state": "normal"}) == (MobState.NORMAL, None)

    @pytest.mark.parametrize("value", [
        None,
        {},
        {"message": "no state"},
        {"state": "alarm"},
        {"state": ["emergency"]},
    ])
    def test_malformed(self, value) -> None:
        with pytest.raises(MalformedDelta):
            parse_notification(value)


def test_build_delta_and_timestamp() -> None:
    values = [{"path": "navigation.mob.elapsed", "value": 1.0}]
    assert build_delta(values) == {"updates": [{"values": values}]}
    assert format_timestamp(datetime(2024, 6, 1, 12, tzinfo=timezone.utc)) == "2024-06-01T12:00:00Z"
