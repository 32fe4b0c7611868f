"""Live vessel-position subscription used while a MOB is being tracked.

Lifecycle::

    INACTIVE → start(event) → ACTIVE → stop() → INACTIVE
                            → (feed error) → INACTIVE, provider degraded

``start`` is idempotent.  Every position delta received while active is
offered to the track history and turned into a :class:`NavigationDelta`
that is published to the host.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from signalk_mob.deltas import (
    PATH_BOW_OFFSET,
    PATH_HEADING,
    PATH_NAV_POSITION,
    build_delta,
    iter_values,
    parse_heading,
    parse_length,
    parse_position,
)
from signalk_mob.host import SignalKHost, SubscriptionHandle, subscription_spec
from signalk_mob.models import GeoPoint, MobEvent, NavigationDelta
from signalk_mob.navigation import DEFAULT_ACCURACY_M, compute_delta
from signalk_mob.track import TrackBuffer

logger = logging.getLogger(__name__)


class PositionSubscriptionController:
    """Owns the position feed subscription and publishes navigation deltas.

    Parameters
    ----------
    host:
        Signal K host used to subscribe and publish.
    track:
        History buffer fed with every position received while active.
    clock:
        Returns the current aware UTC time.
    plugin_id:
        Source id stamped on published deltas.
    period_ms:
        Requested subscription period.
    subscribe_heading:
        Also subscribe to ``navigation.headingTrue`` for bow correction.
    bow_offset_m:
        GPS-to-bow distance; ``None`` reads ``sensors.gps.fromBow`` from the
        host on every computation.
    accuracy:
        Rounding step of published distances, in metres.
    on_sample:
        Called after the track history accepted a sample.
    """

    def __init__(
        self,
        host: SignalKHost,
        track: TrackBuffer,
        clock: Callable[[], datetime],
        plugin_id: str = "mob-signalk-plugin",
        period_ms: int = 1000,
        subscribe_heading: bool = True,
        bow_offset_m: Optional[float] = None,
        accuracy: float = DEFAULT_ACCURACY_M,
        on_sample: Optional[Callable[[], None]] = None,
    ) -> None:
        self._host = host
        self._track = track
        self._clock = clock
        self._plugin_id = plugin_id
        self._period_ms = period_ms
        self._subscribe_heading = subscribe_heading
        self._bow_offset_m = bow_offset_m
        self._accuracy = accuracy
        self._on_sample = on_sample

        self._handle: Optional[SubscriptionHandle] = None
        self._target: Optional[MobEvent] = None
        self._heading: Optional[float] = None
        self._degraded = False

    @property
    def active(self) -> bool:
        return self._handle is not None

    @property
    def degraded(self) -> bool:
        """``True`` after the feed failed to establish."""
        return self._degraded

    def start(self, mob_event: MobEvent) -> None:
        """Publish the target and open the position feed, once."""
        if self.active:
            logger.debug("Position feed already active, start ignored")
            return

        self._target = mob_event
        self._heading = None
        initial = NavigationDelta(position=mob_event.position, time=mob_event.captured_at)
        self._host.publish(self._plugin_id, build_delta(initial.target_values()))
        self._track.clear()

        paths = [PATH_NAV_POSITION]
        if self._subscribe_heading:
            paths.append(PATH_HEADING)

        handle = SubscriptionHandle()
        self._handle = handle
        try:
            subscribed = self._host.subscribe(
                subscription_spec(paths, self._period_ms),
                self._handle_position_delta,
                self._handle_subscription_error,
            )
        except Exception as exc:
            self._handle_subscription_error(exc)
            return

        if self._handle is not handle:
            # on_error already fired during subscribe
            subscribed.cancel()
            return
        self._handle = subscribed
        self._degraded = False
        self._host.set_provider_status("Tracking MOB")
        logger.info("Position feed started (paths=%s)", ",".join(paths))

    def stop(self) -> None:
        """Cancel the feed and clear the history.  Safe when inactive."""
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()
            logger.info("Position feed stopped")
        self._target = None
        self._heading = None
        self._track.clear()

    # ── feed callbacks ──────────────────────────────────────────────

    def _handle_subscription_error(self, error: Exception) -> None:
        logger.error("Position feed failed: %s", error)
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()
        self._degraded = True
        self._host.report_error(error)
        self._host.set_provider_error(f"Position feed failed: {error}")

    def _handle_position_delta(self, delta: dict) -> None:
        if self._handle is None:
            return  # stray delta after stop

        try:
            position: Optional[GeoPoint] = None
            stamp: Optional[datetime] = None
            for entry in iter_values(delta):
                if entry.path == PATH_NAV_POSITION:
                    parsed = parse_position(entry.value)
                    if parsed is not None:
                        position, stamp = parsed, entry.timestamp
                elif entry.path == PATH_HEADING:
                    heading = parse_heading(entry.value)
                    if heading is not None:
                        self._heading = heading
        except Exception:
            logger.exception("Failed to read position delta")
            return

        if position is None:
            return

        now = self._clock()
        try:
            if self._track.record_sample(position, stamp or now) and self._on_sample:
                self._on_sample()
        except Exception:
            logger.exception("Failed to record track sample")

        try:
            nav = compute_delta(
                position,
                self._current_heading(),
                self._target,
                now,
                bow_offset_m=self._current_bow_offset(),
                accuracy=self._accuracy,
            )
            self._publish(nav)
        except Exception:
            logger.exception("Failed to compute MOB navigation delta")

    # ── helpers ─────────────────────────────────────────────────────

    def _current_heading(self) -> Optional[float]:
        if self._heading is not None:
            return self._heading
        return parse_heading(_unwrap(self._host.get_current_value(PATH_HEADING)))

    def _current_bow_offset(self) -> Optional[float]:
        if self._bow_offset_m is not None:
            return self._bow_offset_m
        return parse_length(_unwrap(self._host.get_current_value(PATH_BOW_OFFSET)))

    def _publish(self, nav: NavigationDelta) -> None:
        self._host.publish(self._plugin_id, build_delta(nav.to_values()))


def _unwrap(value: Any) -> Any:
    """Accept both bare values and ``{"value": ...}`` leaves."""
    if isinstance(value, dict) and "value" in value:
        return value["value"]
    return value
