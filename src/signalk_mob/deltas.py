"""Parse inbound Signal K deltas and build outbound ones.

Parsing pipeline::

    delta dict
      │
      ├─ no ``updates`` list        → nothing
      ├─ update without ``values``  → skipped
      ├─ value without ``path``     → skipped
      └─ valid                      → DeltaValue(path, value, timestamp)

Feeds legitimately send partial updates, so malformed parts are skipped
rather than reported.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from signalk_mob.models import GeoPoint, MobState

PATH_NOTIFICATION = "notifications.mob"
PATH_NAV_POSITION = "navigation.position"
PATH_HEADING = "navigation.headingTrue"
PATH_BOW_OFFSET = "sensors.gps.fromBow"

# Values read on demand through ``get_current_value``.
LOOKUP_PATHS = (PATH_NAV_POSITION, PATH_HEADING, PATH_BOW_OFFSET)


class MalformedDelta(ValueError):
    """A notification value the engine cannot act on."""


@dataclass(frozen=True)
class DeltaValue:
    """One ``updates[].values[]`` entry with its update timestamp."""

    path: str
    value: Any
    timestamp: Optional[datetime] = None


def iter_values(delta: Any) -> Iterator[DeltaValue]:
    """Yield every well-formed path/value pair of *delta*, in order."""
    if not isinstance(delta, dict):
        return
    updates = delta.get("updates")
    if not isinstance(updates, list):
        return
    for update in updates:
        if not isinstance(update, dict):
            continue
        values = update.get("values")
        if not isinstance(values, list):
            continue
        timestamp = parse_timestamp(update.get("timestamp"))
        for entry in values:
            if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
                continue
            yield DeltaValue(entry["path"], entry.get("value"), timestamp)


def parse_timestamp(text: Any) -> Optional[datetime]:
    """Parse an ISO-8601 update timestamp into an aware UTC datetime."""
    if not isinstance(text, str) or not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def parse_position(value: Any) -> Optional[GeoPoint]:
    """Return a :class:`GeoPoint` for ``{latitude, longitude}`` or ``None``."""
    if not isinstance(value, dict):
        return None
    lat = _number(value.get("latitude"))
    lon = _number(value.get("longitude"))
    if lat is None or lon is None:
        return None
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        return None
    return GeoPoint(latitude=lat, longitude=lon)


def parse_heading(value: Any) -> Optional[float]:
    """Heading in radians, or ``None``."""
    return _number(value)


def parse_length(value: Any) -> Optional[float]:
    """Finite length in metres, or ``None``."""
    return _number(value)


def parse_notification(value: Any) -> tuple[MobState, Optional[GeoPoint]]:
    """Extract the state and embedded position of a MOB notification.

    The position may sit at ``value.position`` or ``value.data.position``.

    Raises
    ------
    MalformedDelta
        If ``state`` is missing or not one the engine handles.
    """
    if not isinstance(value, dict) or "state" not in value:
        raise MalformedDelta("notification value has no state")
    try:
        state = MobState(value["state"])
    except ValueError as exc:
        raise MalformedDelta(f"unhandled notification state {value['state']!r}") from exc

    position = parse_position(value.get("position"))
    if position is None:
        data = value.get("data")
        if isinstance(data, dict):
            position = parse_position(data.get("position"))
    return state, position


def build_delta(values: list[dict]) -> dict:
    """Build an outbound delta; the host stamps context, source and time."""
    return {"updates": [{"values": values}]}


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with a ``Z`` suffix, as Signal K writes them."""
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
