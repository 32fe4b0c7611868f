"""Bounded, time-throttled history of vessel positions.

A sample is kept only if at least ``min_interval`` has passed since the
last kept one; faster samples are dropped, not queued.  When the buffer is
full the oldest sample is evicted.  The buffer is **not** persisted.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta

from signalk_mob.models import GeoPoint, TrackSample

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 720  # 6 hours at one sample every 30 s
DEFAULT_MIN_INTERVAL = timedelta(seconds=30)


class TrackBuffer:
    """FIFO ring of :class:`TrackSample` in chronological order."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        min_interval: timedelta = DEFAULT_MIN_INTERVAL,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._min_interval = min_interval
        self._samples: deque[TrackSample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._samples)

    def record_sample(self, position: GeoPoint, now: datetime) -> bool:
        """Append a sample unless the last one is younger than the interval.

        Returns
        -------
        bool
            ``True`` when the sample was kept.
        """
        if self._samples and now - self._samples[-1].time < self._min_interval:
            return False
        # deque(maxlen=...) evicts from the left on overflow
        self._samples.append(TrackSample(position=position, time=now))
        return True

    def clear(self) -> None:
        if self._samples:
            logger.debug("Clearing track history (%d samples)", len(self._samples))
        self._samples.clear()

    def snapshot(self) -> tuple[TrackSample, ...]:
        """Return an immutable copy of the samples, oldest first."""
        return tuple(self._samples)
