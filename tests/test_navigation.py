"""Tests for the navigation module."""

import math
from datetime import timedelta

import pytest

from helpers import T0
from signalk_mob import navigation
from signalk_mob.models import GeoPoint, MobEvent, MobState
from signalk_mob.navigation import (
    bow_position,
    compute_delta,
    destination_point,
    geodesic_distance,
    haversine_distance,
    rhumb_bearing,
)


def _event(lat: float = 10.0, lon: float = 20.0) -> MobEvent:
    return MobEvent(state=MobState.EMERGENCY, position=GeoPoint(lat, lon), captured_at=T0)


class TestRhumbBearing:
    """Tests for :func:`rhumb_bearing`."""

    def test_cardinal_directions(self) -> None:
        origin = GeoPoint(0.0, 0.0)
        assert rhumb_bearing(origin, GeoPoint(1.0, 0.0)) == pytest.approx(0.0)
        assert rhumb_bearing(origin, GeoPoint(0.0, 1.0)) == pytest.approx(90.0)
        assert rhumb_bearing(origin, GeoPoint(-1.0, 0.0)) == pytest.approx(180.0)
        assert rhumb_bearing(origin, GeoPoint(0.0, -1.0)) == pytest.approx(270.0)

    def test_diagonal_near_equator(self) -> None:
        assert rhumb_bearing(GeoPoint(0.0, 0.0), GeoPoint(1.0, 1.0)) == pytest.approx(45.0, abs=0.01)

    def test_crosses_antimeridian_the_short_way(self) -> None:
        """179°E → 179°W is a short hop east, not a trip round the world west."""
        assert rhumb_bearing(GeoPoint(0.0, 179.0), GeoPoint(0.0, -179.0)) == pytest.approx(90.0)

    def test_result_is_in_range(self) -> None:
        bearing = rhumb_bearing(GeoPoint(40.0, -70.0), GeoPoint(39.0, -71.0))
        assert 180.0 < bearing < 270.0


class TestGeodesicDistance:
    """Tests for :func:`geodesic_distance`."""

    def test_same_point_is_zero(self) -> None:
        p = GeoPoint(43.2, 5.3)
        assert geodesic_distance(p, p) == 0.0

    def test_vincenty_reference_line(self) -> None:
        """Flinders Peak → Buninyong, the classic Vincenty test line."""
        flinders = GeoPoint(-37.95103342, 144.42486789)
        buninyong = GeoPoint(-37.65282114, 143.92649554)
        assert geodesic_distance(flinders, buninyong) == pytest.approx(54972.27, abs=0.1)

    def test_rounded_to_accuracy(self) -> None:
        a, b = GeoPoint(10.0, 20.0), GeoPoint(10.01, 20.01)
        assert geodesic_distance(a, b, accuracy=10.0) % 10.0 == pytest.approx(0.0, abs=1e-6)

    def test_falls_back_to_haversine(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """When Vincenty does not converge the spherical distance is used."""
        monkeypatch.setattr(navigation, "_vincenty_inverse", lambda a, b: None)
        a, b = GeoPoint(0.0, 0.0), GeoPoint(0.5, 179.5)
        assert geodesic_distance(a, b, accuracy=0) == pytest.approx(haversine_distance(a, b))


class TestBowCorrection:
    """Tests for :func:`destination_point` and :func:`bow_position`."""

    def test_five_metres_north(self) -> None:
        raw = GeoPoint(45.0, 10.0)
        bow = bow_position(raw, 0.0, 5.0)
        assert bow.latitude > raw.latitude
        assert bow.longitude == pytest.approx(raw.longitude, abs=1e-9)
        assert geodesic_distance(raw, bow) == pytest.approx(5.0, abs=0.1)

    def test_heading_is_radians(self) -> None:
        raw = GeoPoint(0.0, 0.0)
        bow = bow_position(raw, math.pi / 2, 100.0)
        assert bow.longitude > 0.0
        assert bow.latitude == pytest.approx(0.0, abs=1e-9)

    def test_unknown_heading_or_offset_leaves_position(self) -> None:
        raw = GeoPoint(45.0, 10.0)
        assert bow_position(raw, None, 5.0) == raw
        assert bow_position(raw, 1.0, None) == raw
        assert bow_position(raw, 1.0, 0.0) == raw

    def test_destination_wraps_longitude(self) -> None:
        p = destination_point(GeoPoint(0.0, 179.9999), 90.0, 100.0)
        assert -180.0 <= p.longitude < -179.99


class TestComputeDelta:
    """Tests for :func:`compute_delta`."""

    def test_missing_vessel_position_clears(self) -> None:
        delta = compute_delta(None, 0.3, _event(), T0, bow_offset_m=5.0)
        assert delta.is_cleared
        assert delta.position is None and delta.time is None

    def test_missing_event_clears(self) -> None:
        assert compute_delta(GeoPoint(1.0, 1.0), None, None, T0).is_cleared

    def test_zero_displacement(self) -> None:
        """Vessel still at the MOB point ten seconds later."""
        event = _event(10.0, 20.0)
        delta = compute_delta(GeoPoint(10.0, 20.0), None, event, T0 + timedelta(seconds=10))
        assert delta.distance == pytest.approx(0.0)
        assert delta.elapsed == pytest.approx(10.0)
        assert delta.position == event.position
        assert delta.time == T0

    def test_bearing_in_radians(self) -> None:
        delta = compute_delta(GeoPoint(0.0, 0.0), None, _event(0.0, 0.01), T0)
        assert delta.bearing == pytest.approx(math.pi / 2)

    def test_is_pure(self) -> None:
        args = (GeoPoint(10.1, 20.1), 1.2, _event(), T0 + timedelta(minutes=3))
        assert compute_delta(*args, bow_offset_m=4.0) == compute_delta(*args, bow_offset_m=4.0)

    def test_uses_bow_position(self) -> None:
        """Distance and bearing are measured from the corrected bow position."""
        vessel = GeoPoint(0.0, 0.0)
        event = _event(0.01, 0.0)
        raw = compute_delta(vessel, 0.0, event, T0)
        corrected = compute_delta(vessel, 0.0, event, T0, bow_offset_m=1000.0)

        bow = bow_position(vessel, 0.0, 1000.0)
        assert corrected.distance == pytest.approx(geodesic_distance(bow, event.position))
        assert corrected.distance < raw.distance - 900.0
        assert corrected.bearing == pytest.approx(0.0, abs=1e-9)
