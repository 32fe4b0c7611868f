"""Tests for the output module (TrackExporter)."""

from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import orjson

from helpers import T0
from signalk_mob.models import GeoPoint, TrackSample
from signalk_mob.output import TrackExporter, render_track

SAMPLES = (
    TrackSample(GeoPoint(10.0, 20.0), T0),
    TrackSample(GeoPoint(10.001, 20.001), T0 + timedelta(seconds=30)),
)


def test_render_track_is_ndjson() -> None:
    data = render_track(SAMPLES)
    lines = data.splitlines()
    assert data.endswith(b"\n")
    assert len(lines) == 2
    assert orjson.loads(lines[1]) == {
        "position": {"latitude": 10.001, "longitude": 20.001},
        "time": "2024-06-01T12:00:30+00:00",
    }


def test_render_empty_track() -> None:
    assert render_track(()) == b""


class TestTrackExporter:
    """Tests for :class:`TrackExporter`."""

    def test_export_replaces_file(self, tmp_path: Path) -> None:
        exporter = TrackExporter(tmp_path / "out" / "track.ndjson")
        exporter.export(SAMPLES)
        exporter.export(SAMPLES[:1])

        content = exporter.path.read_bytes()
        assert len(content.splitlines()) == 1
        assert list((tmp_path / "out").glob("*.active")) == []

    def test_export_failure_is_logged(self, tmp_path: Path) -> None:
        """An OSError while writing must not propagate into tracking."""
        exporter = TrackExporter(tmp_path / "track.ndjson")
        with patch("signalk_mob.output.os.replace", side_effect=OSError("disk full")):
            exporter.export(SAMPLES)
        assert not exporter.path.exists()
