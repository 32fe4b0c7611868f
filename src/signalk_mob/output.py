"""Track history export to an NDJSON file.

TrackExporter
    Rewrites ``path`` with the current track snapshot, one
    ``{"position": ..., "time": ...}`` record per line.  Each export is
    written to ``{path}.active``, ``fsync``-ed and atomically renamed over
    ``path``, so readers never see a half-written file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

import orjson

from signalk_mob.models import TrackSample

logger = logging.getLogger(__name__)


def render_track(samples: Iterable[TrackSample]) -> bytes:
    """Serialize *samples* as newline-terminated NDJSON."""
    return b"".join(
        orjson.dumps(sample.to_record(), option=orjson.OPT_APPEND_NEWLINE)
        for sample in samples
    )


class TrackExporter:
    """Atomically replace an NDJSON file with the latest track snapshot.

    Parameters
    ----------
    path:
        Destination file.  Its directory is created if missing.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._active_path = self._path.with_name(self._path.name + ".active")
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def export(self, samples: Iterable[TrackSample]) -> None:
        """Write *samples* and rename over the destination.

        I/O errors are logged, not raised: the export must never interrupt
        tracking.
        """
        data = render_track(samples)
        try:
            with open(self._active_path, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(self._active_path, self._path)
        except OSError as exc:
            logger.warning("Track export to %s failed: %s", self._path, exc)
            return
        logger.debug("Exported track (%d bytes) to %s", len(data), self._path.name)
