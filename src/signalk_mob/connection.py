"""WebSocket connection to a Signal K server delta stream.

Implements :class:`signalk_mob.host.SignalKHost` over the
``/signalk/v1/stream`` endpoint with an exponential-backoff reconnect state
machine::

    INIT → CONNECTING → (success) → CONNECTED → (disconnect) → WAIT_BACKOFF → CONNECTING
                      → (failure) →              WAIT_BACKOFF → CONNECTING
    CONNECTED → (shutdown) → SHUTTING_DOWN

Live subscriptions are re-sent after every reconnect.  A standing
subscription on the watched paths keeps the cache behind
``get_current_value`` filled even when no handler asked for them.
Outbound deltas and PUT requests go through a bounded queue drained while
connected.  Inbound deltas are dispatched synchronously, in arrival order,
to the handlers whose paths match; a cancelled handler is never called
again.
"""

from __future__ import annotations

import asyncio
import enum
import fnmatch
import itertools
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import orjson
import websockets
import websockets.exceptions

from signalk_mob.config import SignalKConfig
from signalk_mob.deltas import LOOKUP_PATHS, format_timestamp, iter_values
from signalk_mob.host import (
    DeltaHandler,
    ErrorHandler,
    SubscriptionError,
    SubscriptionHandle,
    subscription_spec,
)

logger = logging.getLogger(__name__)

OUTBOX_SIZE = 1000
WATCH_PERIOD_MS = 1000


class ConnectionState(enum.Enum):
    """States in the reconnect state machine."""

    INIT = "INIT"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    WAIT_BACKOFF = "WAIT_BACKOFF"
    SHUTTING_DOWN = "SHUTTING_DOWN"


@dataclass
class _Subscription:
    spec: dict
    patterns: list[str]
    on_delta: DeltaHandler
    on_error: ErrorHandler
    active: bool = True

    def matches(self, paths: set[str]) -> bool:
        return any(
            fnmatch.fnmatchcase(path, pattern)
            for pattern in self.patterns
            for path in paths
        )


class SignalKConnection:
    """Manages the WebSocket lifecycle and the Signal K stream protocol.

    Parameters
    ----------
    config:
        Server URL, access token and reconnect parameters.
    watch:
        Paths kept subscribed for the whole session so
        :meth:`get_current_value` can answer for them.
    """

    def __init__(self, config: SignalKConfig, watch: Iterable[str] = LOOKUP_PATHS) -> None:
        self._url = config.server_url
        self._token = config.token
        self._reconnect = config.reconnect
        self._state = ConnectionState.INIT
        self._shutdown = asyncio.Event()
        self._ws = None
        self._attempt = 0

        self._ids = itertools.count(1)
        self._subscriptions: dict[int, _Subscription] = {}
        self._outbox: asyncio.Queue[dict] = asyncio.Queue(maxsize=OUTBOX_SIZE)
        self._values: dict[str, Any] = {}
        self._watched: list[str] = []
        self._self_context: Optional[str] = None
        self._provider_status = ""
        self._provider_error: Optional[str] = None

        self.watch(watch)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def watched_paths(self) -> list[str]:
        return list(self._watched)

    @property
    def provider_status(self) -> str:
        return self._provider_status

    @property
    def provider_error(self) -> Optional[str]:
        return self._provider_error

    def request_shutdown(self) -> None:
        """Signal the connection to close gracefully (no reconnect)."""
        self._set_state(ConnectionState.SHUTTING_DOWN)
        self._shutdown.set()

    def watch(self, paths: Iterable[str]) -> None:
        """Keep *paths* subscribed so their latest values are cached."""
        added = [path for path in paths if path not in self._watched]
        if not added:
            return
        self._watched.extend(added)
        if self._state is ConnectionState.CONNECTED:
            self._enqueue(self._watch_spec(added))
        logger.debug("Watching %s", ",".join(added))

    # ── SignalKHost ─────────────────────────────────────────────────

    def subscribe(
        self,
        spec: dict,
        on_delta: DeltaHandler,
        on_error: ErrorHandler,
    ) -> SubscriptionHandle:
        if self._shutdown.is_set():
            on_error(SubscriptionError("connection is shutting down"))
            handle = SubscriptionHandle()
            handle.cancel()
            return handle

        sub_id = next(self._ids)
        patterns = [
            entry["path"] for entry in spec.get("subscribe", [])
            if isinstance(entry, dict) and isinstance(entry.get("path"), str)
        ]
        sub = _Subscription(spec=spec, patterns=patterns, on_delta=on_delta, on_error=on_error)
        self._subscriptions[sub_id] = sub
        if self._state is ConnectionState.CONNECTED:
            self._enqueue(spec)
        logger.debug("Subscribed #%d to %s", sub_id, ",".join(patterns))

        def _cancel() -> None:
            sub.active = False
            self._subscriptions.pop(sub_id, None)
            # paths still watched or used by another subscription stay open
            still_used = set(self._watched)
            for other in self._subscriptions.values():
                still_used.update(other.patterns)
            released = [p for p in patterns if p not in still_used]
            if released and self._state is ConnectionState.CONNECTED:
                self._enqueue({
                    "context": spec.get("context", "vessels.self"),
                    "unsubscribe": [{"path": p} for p in released],
                })
            logger.debug("Unsubscribed #%d", sub_id)

        return SubscriptionHandle(_cancel)

    def publish(self, plugin_id: str, payload: dict) -> None:
        now = format_timestamp(datetime.now(timezone.utc))
        updates = []
        for update in payload.get("updates", []):
            stamped = dict(update)
            stamped.setdefault("$source", plugin_id)
            stamped.setdefault("timestamp", now)
            updates.append(stamped)
        self._enqueue({"context": payload.get("context", "vessels.self"), "updates": updates})

    def get_current_value(self, path: str) -> Any:
        return self._values.get(path)

    def create_resource(self, kind: str, resource_id: str, body: dict) -> None:
        self._enqueue({
            "context": "vessels.self",
            "requestId": str(uuid.uuid4()),
            "put": {"path": f"resources.{kind}.{resource_id}", "value": body},
        })

    def report_error(self, error: Exception) -> None:
        logger.error("Plugin error: %s", error)

    def set_provider_error(self, message: str) -> None:
        self._provider_error = message
        logger.error("Provider error: %s", message)

    def set_provider_status(self, message: str) -> None:
        self._provider_status = message
        self._provider_error = None
        logger.info("Provider status: %s", message)

    # ── inbound dispatch ────────────────────────────────────────────

    def dispatch(self, message: dict) -> None:
        """Route one decoded server message."""
        if "updates" in message:
            self._dispatch_delta(message)
        elif "requestId" in message:
            status = message.get("statusCode")
            if isinstance(status, int) and status >= 400:
                logger.warning(
                    "Request %s failed (%s): %s",
                    message.get("requestId"),
                    status,
                    message.get("message", ""),
                )
        elif "self" in message:
            self._self_context = message["self"]
            logger.info(
                "Connected to %s %s (self=%s)",
                message.get("name", "server"),
                message.get("version", ""),
                self._self_context,
            )

    def _is_self(self, context: Any) -> bool:
        if context is None or context == "vessels.self":
            return True
        if self._self_context is None:
            return False
        return context in (self._self_context, f"vessels.{self._self_context}")

    def _dispatch_delta(self, delta: dict) -> None:
        if not self._is_self(delta.get("context")):
            return
        paths: set[str] = set()
        for entry in iter_values(delta):
            self._values[entry.path] = entry.value
            paths.add(entry.path)
        if not paths:
            return

        for sub in list(self._subscriptions.values()):
            # an earlier handler may have cancelled this one
            if not sub.active or not sub.matches(paths):
                continue
            try:
                sub.on_delta(delta)
            except Exception:
                logger.exception("Delta handler raised")

    # ── connect + receive ───────────────────────────────────────────

    async def run(self) -> None:
        """Connect, reconnecting with backoff, until shutdown is requested."""
        while not self._shutdown.is_set():
            try:
                await self._connect_and_receive()
            except _FatalAuthError as exc:
                logger.error("Fatal auth error, will not reconnect")
                self._fail_subscriptions(SubscriptionError(str(exc)))
                break
            except Exception as exc:
                if self._shutdown.is_set():
                    break
                logger.warning("Connection error: %s", exc)

            if self._shutdown.is_set():
                break

            await self._backoff()

    async def _connect_and_receive(self) -> None:
        """Open the stream, replay subscriptions, and pump messages."""
        self._set_state(ConnectionState.CONNECTING)
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None

        try:
            async with websockets.connect(
                self._url,
                additional_headers=headers,
                ping_interval=20,
                ping_timeout=20,
                close_timeout=10,
            ) as ws:
                self._ws = ws
                self._set_state(ConnectionState.CONNECTED)
                self._attempt = 0  # reset backoff on success

                if self._watched:
                    await ws.send(orjson.dumps(self._watch_spec(self._watched)).decode())
                for sub in list(self._subscriptions.values()):
                    await ws.send(orjson.dumps(sub.spec).decode())

                sender = asyncio.create_task(self._send_loop(ws))
                stopper = asyncio.create_task(self._shutdown.wait())
                receiver = asyncio.create_task(self._receive_loop(ws))
                try:
                    done, _ = await asyncio.wait(
                        {sender, stopper, receiver},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    for task in done:
                        if task is not stopper and task.exception() is not None:
                            raise task.exception()
                finally:
                    for task in (sender, stopper, receiver):
                        task.cancel()
                    await asyncio.gather(sender, stopper, receiver, return_exceptions=True)
                    if self._shutdown.is_set():
                        await self._drain(ws)

        except websockets.exceptions.InvalidStatus as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise _FatalAuthError(f"server rejected credentials ({status})") from exc
            logger.warning("Handshake rejected: HTTP %s", status)
        except asyncio.TimeoutError:
            logger.warning("Timeout talking to %s", self._url)
        except websockets.exceptions.ConnectionClosed as exc:
            logger.warning("WebSocket closed: %s", exc)
        except OSError as exc:
            logger.warning("Network error: %s", exc)
        finally:
            self._ws = None

    async def _receive_loop(self, ws) -> None:
        async for raw in ws:
            try:
                message = orjson.loads(raw)
            except orjson.JSONDecodeError:
                logger.warning("Discarding non-JSON message")
                continue
            if isinstance(message, dict):
                self.dispatch(message)
        logger.info("Stream closed by server, will reconnect")

    async def _send_loop(self, ws) -> None:
        while True:
            message = await self._outbox.get()
            await ws.send(orjson.dumps(message).decode())

    async def _drain(self, ws) -> None:
        """Best-effort flush of queued messages before the socket closes."""
        while not self._outbox.empty():
            message = self._outbox.get_nowait()
            try:
                await ws.send(orjson.dumps(message).decode())
            except websockets.exceptions.ConnectionClosed:
                logger.warning("Dropped %d queued messages", self._outbox.qsize() + 1)
                return

    # ── backoff ─────────────────────────────────────────────────────

    async def _backoff(self) -> None:
        """Wait with exponential backoff + jitter before reconnecting."""
        self._set_state(ConnectionState.WAIT_BACKOFF)
        self._attempt += 1

        delay = backoff_delay(
            self._attempt,
            self._reconnect.initial_delay_ms,
            self._reconnect.max_delay_ms,
            self._reconnect.backoff_multiplier,
            self._reconnect.jitter_pct,
        )
        logger.info("Reconnecting in %.1fs (attempt %d)", delay, self._attempt)

        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass  # backoff elapsed normally

    # ── helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _watch_spec(paths: list[str]) -> dict:
        return subscription_spec(list(paths), WATCH_PERIOD_MS)

    def _enqueue(self, message: dict) -> None:
        try:
            self._outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Outbound queue full, dropping message")

    def _fail_subscriptions(self, error: Exception) -> None:
        for sub in list(self._subscriptions.values()):
            if sub.active:
                sub.on_error(error)

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        self._state = new
        logger.info("Connection state: %s → %s", old.value, new.value)


def backoff_delay(
    attempt: int,
    initial_delay_ms: int,
    max_delay_ms: int,
    multiplier: int,
    jitter_pct: int,
) -> float:
    """Seconds to wait before reconnect *attempt* (1-based)."""
    base = initial_delay_ms / 1000.0
    max_delay = max_delay_ms / 1000.0
    delay = min(base * (multiplier ** (attempt - 1)), max_delay)
    jitter = delay * (jitter_pct / 100.0) * (2 * random.random() - 1)
    return max(0.1, delay + jitter)


class _FatalAuthError(Exception):
    """Raised when the server rejects the token; no reconnect."""
