"""Dataclass models for the MOB engine.

All models are designed to be serializable via :meth:`to_record` (or
``dataclasses.asdict()``) followed by ``orjson.dumps()``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

PATH_POSITION = "navigation.mob.position"
PATH_TIME = "navigation.mob.time"
PATH_ELAPSED = "navigation.mob.elapsed"
PATH_DISTANCE = "navigation.mob.distance"
PATH_BEARING = "navigation.mob.bearingTrue"

PUBLISHED_PATHS = (
    PATH_POSITION,
    PATH_TIME,
    PATH_ELAPSED,
    PATH_DISTANCE,
    PATH_BEARING,
)


class MobState(enum.Enum):
    """Value of ``notifications.mob.state`` the engine reacts to."""

    EMERGENCY = "emergency"
    NORMAL = "normal"


class EngineState(enum.Enum):
    """States of the MOB state machine."""

    IDLE = "IDLE"
    TRACKING = "TRACKING"


@dataclass(frozen=True)
class GeoPoint:
    """A WGS-84 position in decimal degrees."""

    latitude: float
    longitude: float

    def to_record(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class MobEvent:
    """The active emergency.

    ``position`` is the rescue target and never changes once captured.
    """

    state: MobState
    position: GeoPoint
    captured_at: datetime


@dataclass(frozen=True)
class TrackSample:
    """One vessel position kept in the track history."""

    position: GeoPoint
    time: datetime

    def to_record(self) -> dict:
        return {
            "position": self.position.to_record(),
            "time": self.time.isoformat(),
        }


@dataclass(frozen=True)
class NavigationDelta:
    """Derived navigation values published while tracking.

    All navigation fields are ``None`` together when either the vessel or
    the MOB position is unknown (the *cleared* delta).
    """

    elapsed: Optional[float] = None
    distance: Optional[float] = None
    bearing: Optional[float] = None
    position: Optional[GeoPoint] = None
    time: Optional[datetime] = None

    @classmethod
    def cleared(cls) -> "NavigationDelta":
        return cls()

    @property
    def is_cleared(self) -> bool:
        return self.elapsed is None and self.distance is None and self.bearing is None

    def target_values(self) -> list[dict]:
        """``navigation.mob.position`` and ``navigation.mob.time`` entries."""
        return [
            {
                "path": PATH_POSITION,
                "value": self.position.to_record() if self.position else None,
            },
            {
                "path": PATH_TIME,
                "value": self.time.isoformat() if self.time else None,
            },
        ]

    def to_values(self, include_target: bool = False) -> list[dict]:
        """Return Signal K ``values`` entries for this delta.

        Parameters
        ----------
        include_target:
            Also emit the target entries.  These only change on activation
            and on clear, so the periodic updates leave them out.
        """
        values = [
            {"path": PATH_ELAPSED, "value": self.elapsed},
            {"path": PATH_DISTANCE, "value": self.distance},
            {"path": PATH_BEARING, "value": self.bearing},
        ]
        if include_target:
            values = self.target_values() + values
        return values
