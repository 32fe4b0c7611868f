"""Click CLI for the Signal K MOB tracker.

Entry point registered in ``pyproject.toml`` as ``signalk-mob``.

Subcommands::

    signalk-mob                                   # connect and track MOB alarms
    signalk-mob --validate-config                 # check the config and exit
    signalk-mob bearing LAT1 LON1 LAT2 LON2       # one-off bearing / distance
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import signal
import sys
from dataclasses import asdict
from typing import Optional

import click
import orjson

from signalk_mob import __version__
from signalk_mob.config import AppConfig, load_config
from signalk_mob.connection import SignalKConnection
from signalk_mob.engine import MobEngine
from signalk_mob.models import GeoPoint
from signalk_mob.navigation import bow_position, geodesic_distance, rhumb_bearing
from signalk_mob.output import TrackExporter
from signalk_mob.redactor import SecretRedactingFilter, collect_secret_values

logger = logging.getLogger("signalk_mob")


# ── structured JSON log formatter ───────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(level: str, fmt: str, secret_values: list[str] | None = None) -> None:
    """Configure the root logger on stderr with secret redaction."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    # on the handler so records from child loggers are scrubbed too
    handler.addFilter(SecretRedactingFilter(secret_values))
    root.addHandler(handler)


# ── main CLI group ──────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.option("-c", "--config", "config_path", default=None,
              help="Config file path (default: $SIGNALK_MOB_CONFIG, else built-in defaults).")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--server-url", default=None, help="Override the Signal K stream URL.")
@click.option("--token", default=None, help="Override the Signal K access token.")
@click.option("--track-file", default=None, help="Export the MOB track as NDJSON here.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    log_level: Optional[str],
    server_url: Optional[str],
    token: Optional[str],
    track_file: Optional[str],
    validate_only: bool,
) -> None:
    """Signal K man-overboard tracker: bearing, distance and elapsed time to the MOB."""
    if ctx.invoked_subcommand is not None:
        return  # defer to subcommand

    cfg_path = config_path or os.environ.get("SIGNALK_MOB_CONFIG")

    overrides: dict[str, str] = {}
    if token:
        overrides["SIGNALK_TOKEN"] = token

    try:
        cfg = load_config(cfg_path, overrides=overrides)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    if server_url:
        cfg.signalk.server_url = server_url
    if token:
        cfg.signalk.token = token
    if track_file:
        cfg.output.track_file = track_file

    effective_level = (
        log_level
        or os.environ.get("SIGNALK_MOB_LOG_LEVEL")
        or cfg.logging.level
    )
    secret_values = collect_secret_values(asdict(cfg), cfg.logging.redact_patterns)
    _setup_logging(effective_level, cfg.logging.format, secret_values)

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    logger.info(
        "Starting signalk-mob %s (server=%s, plugin=%s)",
        __version__,
        cfg.signalk.server_url,
        cfg.mob.plugin_id,
    )
    asyncio.run(_run(cfg))


# ── async runtime ───────────────────────────────────────────────────


async def _run(cfg: AppConfig) -> None:
    """Wire the engine to a live connection and run until signalled."""
    loop = asyncio.get_running_loop()

    conn = SignalKConnection(cfg.signalk)
    exporter = TrackExporter(cfg.output.track_file) if cfg.output.track_file else None
    engine = MobEngine(conn, cfg.mob, exporter=exporter)

    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        engine.stop()
        conn.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    engine.start()
    try:
        await conn.run()
    finally:
        engine.stop()
        logger.info("Shut down (state=%s)", engine.state.value)


# ── bearing subcommand ──────────────────────────────────────────────


@main.command("bearing", context_settings={"ignore_unknown_options": True})
@click.argument("lat1", type=float)
@click.argument("lon1", type=float)
@click.argument("lat2", type=float)
@click.argument("lon2", type=float)
@click.option("--heading", type=float, default=None,
              help="True heading of the vessel in degrees.")
@click.option("--bow-offset", type=float, default=None,
              help="GPS antenna to bow distance in metres.")
@click.option("--accuracy", type=float, default=0.1, show_default=True,
              help="Distance rounding step in metres.")
def bearing(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    heading: Optional[float],
    bow_offset: Optional[float],
    accuracy: float,
) -> None:
    """Rhumb-line bearing and geodesic distance from vessel to MOB."""
    heading_rad = math.radians(heading) if heading is not None else None
    origin = bow_position(GeoPoint(lat1, lon1), heading_rad, bow_offset)
    target = GeoPoint(lat2, lon2)
    bearing_deg = rhumb_bearing(origin, target)
    click.echo(orjson.dumps({
        "bearing_deg": round(bearing_deg, 3),
        "bearing_rad": math.radians(bearing_deg),
        "distance_m": geodesic_distance(origin, target, accuracy),
    }).decode())
