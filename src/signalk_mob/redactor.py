"""Logging filter that keeps the Signal K access token out of log output.

Secret values are collected from the resolved configuration: every string
whose *key* matches one of ``logging.redact_patterns`` (shell-style globs,
case-insensitive).  Any occurrence in a log message or its arguments is
replaced with ``[REDACTED]``.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Any, Iterable

REDACTED = "[REDACTED]"


class SecretRedactingFilter(logging.Filter):
    """Scrub known secret values from every record passing through."""

    def __init__(self, secret_values: Iterable[str] | None = None) -> None:
        super().__init__()
        # single characters would redact half the log
        self._secrets = sorted(
            {s for s in (secret_values or []) if s and len(s) > 1},
            key=len,
            reverse=True,
        )

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            record.msg = self._redact(record.msg)
            if isinstance(record.args, tuple):
                record.args = tuple(self._redact(a) for a in record.args)
            elif isinstance(record.args, dict):
                record.args = {k: self._redact(v) for k, v in record.args.items()}
        return True

    def _redact(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        for secret in self._secrets:
            value = value.replace(secret, REDACTED)
        return value


def collect_secret_values(config: Any, patterns: list[str] | None = None) -> list[str]:
    """Return the string values of *config* whose keys match *patterns*."""
    found: list[str] = []
    if patterns:
        _walk(config, [p.lower() for p in patterns], found)
    return found


def _walk(obj: Any, patterns: list[str], out: list[str]) -> None:
    if isinstance(obj, dict):
        for key, val in obj.items():
            if isinstance(val, str) and any(fnmatch.fnmatch(str(key).lower(), p) for p in patterns):
                out.append(val)
            _walk(val, patterns, out)
    elif isinstance(obj, (list, tuple)):
        for item in obj:
            _walk(item, patterns, out)
