"""MOB state machine: the single entry point for ``notifications.mob``.

::

    IDLE ── emergency, no active event ──▶ TRACKING
    TRACKING ── normal ──▶ IDLE   (feed stopped, published fields cleared)

Anything else (missing state, unknown state, repeated emergency while
tracking, normal while idle) is ignored, except that an emergency while
TRACKING with the position feed down restarts the feed for the event
already captured.  The engine is the only owner of the active
:class:`MobEvent`; at most one exists at any time.

All state lives on the instance.  Handlers run to completion on the host's
single event loop and never let an exception escape into it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from signalk_mob.config import MobConfig
from signalk_mob.controller import PositionSubscriptionController
from signalk_mob.deltas import (
    PATH_NAV_POSITION,
    PATH_NOTIFICATION,
    MalformedDelta,
    build_delta,
    format_timestamp,
    iter_values,
    parse_notification,
    parse_position,
)
from signalk_mob.host import SignalKHost, SubscriptionHandle, subscription_spec
from signalk_mob.models import EngineState, GeoPoint, MobEvent, MobState, NavigationDelta
from signalk_mob.output import TrackExporter
from signalk_mob.track import TrackBuffer

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MobEngine:
    """One man-overboard tracker bound to one Signal K host.

    Parameters
    ----------
    host:
        Collaborator used for every subscription, publish and lookup.
    config:
        MOB behaviour settings.
    clock:
        Returns the current aware UTC time.  Injected by tests.
    exporter:
        Optional track file writer, refreshed after every kept sample and
        when tracking stops.
    """

    def __init__(
        self,
        host: SignalKHost,
        config: Optional[MobConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        exporter: Optional[TrackExporter] = None,
    ) -> None:
        self._host = host
        self._config = config or MobConfig()
        self._clock = clock or _utcnow
        self._exporter = exporter

        self._state = EngineState.IDLE
        self._mob_event: Optional[MobEvent] = None
        self._notification_handle: Optional[SubscriptionHandle] = None

        self._track = TrackBuffer(
            capacity=self._config.track_capacity,
            min_interval=timedelta(seconds=self._config.sample_interval_seconds),
        )
        self._controller = PositionSubscriptionController(
            host,
            self._track,
            self._clock,
            plugin_id=self._config.plugin_id,
            period_ms=self._config.subscription_period_ms,
            subscribe_heading=self._config.subscribe_heading,
            bow_offset_m=self._config.bow_offset_m,
            accuracy=self._config.accuracy_m,
            on_sample=self._export_track,
        )

    # ── read-only views ─────────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def mob_event(self) -> Optional[MobEvent]:
        return self._mob_event

    @property
    def controller(self) -> PositionSubscriptionController:
        return self._controller

    @property
    def degraded(self) -> bool:
        return self._controller.degraded

    def track_snapshot(self) -> list[dict]:
        """Track history as ``{position, time}`` records, oldest first."""
        return [sample.to_record() for sample in self._track.snapshot()]

    # ── lifecycle ───────────────────────────────────────────────────

    def start(self) -> None:
        """Subscribe to ``notifications.mob``.  Idempotent."""
        if self._notification_handle is not None:
            return
        pending = SubscriptionHandle()
        self._notification_handle = pending
        try:
            handle = self._host.subscribe(
                subscription_spec([PATH_NOTIFICATION], self._config.subscription_period_ms),
                self.handle_notification_delta,
                self._handle_notification_error,
            )
        except Exception as exc:
            self._handle_notification_error(exc)
            return
        if self._notification_handle is not pending:
            handle.cancel()
            return
        self._notification_handle = handle
        logger.info("Listening for %s", PATH_NOTIFICATION)

    def stop(self) -> None:
        """Unsubscribe everything; clears published fields if tracking."""
        handle, self._notification_handle = self._notification_handle, None
        if handle is not None:
            handle.cancel()
        if self._state is EngineState.TRACKING:
            self._deactivate()

    # ── notification handling ───────────────────────────────────────

    def handle_notification_delta(self, delta: dict) -> None:
        """Apply every ``notifications.mob`` value carried by *delta*."""
        try:
            for entry in iter_values(delta):
                if entry.path == PATH_NOTIFICATION:
                    self._apply_notification(entry.value)
        except Exception:
            logger.exception("Failed to handle notification delta")

    def _apply_notification(self, value: object) -> None:
        try:
            mob_state, position = parse_notification(value)
        except MalformedDelta as exc:
            logger.debug("Ignoring notification: %s", exc)
            return

        if mob_state is MobState.EMERGENCY:
            if self._mob_event is not None:
                if self._controller.active:
                    logger.debug("MOB already active, duplicate emergency ignored")
                else:
                    logger.info("Position feed down, restarting for active MOB")
                    self._start_feed()
                return
            if position is None:
                position = parse_position(self._host.get_current_value(PATH_NAV_POSITION))
            if position is None:
                logger.warning("Emergency notification without a known position ignored")
                return
            self._activate(position)
        elif self._mob_event is not None:
            self._deactivate()

    def _activate(self, position: GeoPoint) -> None:
        self._mob_event = MobEvent(
            state=MobState.EMERGENCY,
            position=position,
            captured_at=self._clock(),
        )
        self._state = EngineState.TRACKING
        logger.warning(
            "MOB activated at %.6f, %.6f",
            position.latitude,
            position.longitude,
        )
        if self._config.create_waypoint:
            self._create_waypoint(self._mob_event)
        self._start_feed()

    def _start_feed(self) -> None:
        try:
            self._controller.start(self._mob_event)
        except Exception:
            logger.exception("Failed to start position feed")
            self._controller.stop()

    def _deactivate(self) -> None:
        self._controller.stop()
        self._mob_event = None
        self._state = EngineState.IDLE
        self._host.publish(
            self._config.plugin_id,
            build_delta(NavigationDelta.cleared().to_values(include_target=True)),
        )
        self._export_track()
        logger.info("MOB cleared")

    def _handle_notification_error(self, error: Exception) -> None:
        logger.error("Notification feed failed: %s", error)
        self._notification_handle = None
        self._host.report_error(error)
        self._host.set_provider_error(f"Notification feed failed: {error}")

    # ── side outputs ────────────────────────────────────────────────

    def _create_waypoint(self, event: MobEvent) -> None:
        resource_id = str(uuid.uuid4())
        stamp = format_timestamp(event.captured_at)
        body = {
            "name": f"MOB_{stamp}",
            "description": "Person Over Board",
            "type": "MOB",
            "feature": {
                "type": "Feature",
                "id": resource_id,
                "geometry": {
                    "type": "Point",
                    "coordinates": [event.position.longitude, event.position.latitude],
                },
                "properties": {"timestamp": stamp},
            },
        }
        try:
            self._host.create_resource("waypoints", resource_id, body)
        except Exception:
            logger.exception("Failed to create MOB waypoint")
            return
        logger.info("Created MOB waypoint %s", resource_id)

    def _export_track(self) -> None:
        if self._exporter is not None:
            self._exporter.export(self._track.snapshot())
