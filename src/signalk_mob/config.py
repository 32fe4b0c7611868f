"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import jsonschema
import orjson

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent / "config.schema.json"


@dataclass
class ReconnectConfig:
    """Reconnection backoff parameters."""

    initial_delay_ms: int = 1000
    max_delay_ms: int = 60000
    backoff_multiplier: int = 2
    jitter_pct: int = 20


@dataclass
class SignalKConfig:
    """Signal K server connection settings."""

    server_url: str = "ws://localhost:3000/signalk/v1/stream?subscribe=none"
    token: str = ""
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)


@dataclass
class MobConfig:
    """MOB tracking behaviour."""

    plugin_id: str = "mob-signalk-plugin"
    subscription_period_ms: int = 1000
    track_capacity: int = 720
    sample_interval_seconds: float = 30.0
    accuracy_m: float = 0.1
    bow_offset_m: Optional[float] = None
    subscribe_heading: bool = True
    create_waypoint: bool = False


@dataclass
class OutputConfig:
    """Track export settings; no export when ``track_file`` is unset."""

    track_file: Optional[str] = None


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "json"
    redact_patterns: list[str] = field(
        default_factory=lambda: ["*token*", "*password*", "*secret*"]
    )


@dataclass
class AppConfig:
    """Top-level application configuration."""

    signalk: SignalKConfig = field(default_factory=SignalKConfig)
    mob: MobConfig = field(default_factory=MobConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no ``:-`` present

        if overrides and var_name in overrides:
            return overrides[var_name]
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default

        raise ValueError(
            f"Required variable ${{{var_name}}} is not set in environment "
            f"or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def _pick(cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys of *raw* that are fields of dataclass *cls*."""
    return {k: raw[k] for k in raw if k in cls.__dataclass_fields__}


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    signalk_raw = raw.get("signalk", {})
    reconnect_raw = signalk_raw.get("reconnect", {})
    logging_raw = raw.get("logging", {})

    return AppConfig(
        signalk=SignalKConfig(
            server_url=signalk_raw.get(
                "server_url", "ws://localhost:3000/signalk/v1/stream?subscribe=none"
            ),
            token=signalk_raw.get("token", ""),
            reconnect=ReconnectConfig(**_pick(ReconnectConfig, reconnect_raw)),
        ),
        mob=MobConfig(**_pick(MobConfig, raw.get("mob", {}))),
        output=OutputConfig(**_pick(OutputConfig, raw.get("output", {}))),
        logging=LoggingConfig(
            level=logging_raw.get("level", "info"),
            format=logging_raw.get("format", "json"),
            redact_patterns=logging_raw.get(
                "redact_patterns", ["*token*", "*password*", "*secret*"]
            ),
        ),
    )


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to the JSON config.  ``None`` yields the defaults
        (still subject to validation of an empty document).
    overrides:
        CLI-supplied variable overrides.
    schema_path:
        Path to the JSON Schema file.  Defaults to the
        ``config.schema.json`` shipped with the package.

    Returns
    -------
    AppConfig
        Fully resolved and validated configuration.

    Raises
    ------
    ValueError
        If a required ``${VAR}`` cannot be resolved.
    jsonschema.ValidationError
        If the config fails schema validation.
    """
    raw: dict[str, Any] = orjson.loads(Path(path).read_bytes()) if path else {}

    interpolated = _walk_and_interpolate(raw, overrides=overrides)

    # --- schema validation ---
    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        jsonschema.validate(instance=interpolated, schema=schema)
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    return _dict_to_config(interpolated)
