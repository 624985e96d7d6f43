"""Ground tracks: bounded, time-ordered sub-satellite points per object.

Tracks are split into segments wherever consecutive points jump across the
antimeridian, so renderers can draw each segment as an unbroken line.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from orbtrack.core.frames import GeodeticPoint, to_geodetic
from orbtrack.core.propagation import PropagationError, propagate
from orbtrack.core.tle import ElementRecord
from orbtrack.utils.constants import (
    DEFAULT_FORECAST_STEP_S,
    DEFAULT_TRACK_MAX_POINTS,
    DEFAULT_TRACK_SPACING_S,
)

logger = logging.getLogger(__name__)

Segment = tuple[GeodeticPoint, ...]


def split_segments(points: Sequence[GeodeticPoint]) -> tuple[Segment, ...]:
    """Split points into runs that do not cross the antimeridian.

    A new segment starts wherever consecutive longitudes differ by more
    than 180 degrees.
    """
    segments: list[Segment] = []
    current: list[GeodeticPoint] = []
    for point in points:
        if current and abs(point.longitude_deg - current[-1].longitude_deg) > 180.0:
            segments.append(tuple(current))
            current = []
        current.append(point)
    if current:
        segments.append(tuple(current))
    return tuple(segments)


class GroundTrack:
    """Trailing ground track for one object.

    Args:
        window: Maximum age of the oldest point relative to the newest.
            ``None`` keeps points until ``max_points`` is reached.
        max_points: Hard cap on stored points; the oldest are evicted first.
        min_spacing: Points closer than this to the previous one are dropped.
    """

    def __init__(
        self,
        window: timedelta | None = None,
        max_points: int = DEFAULT_TRACK_MAX_POINTS,
        min_spacing: timedelta = timedelta(seconds=DEFAULT_TRACK_SPACING_S),
    ) -> None:
        if max_points < 1:
            raise ValueError(f"max_points must be positive, got {max_points}")
        self.window = window
        self.max_points = max_points
        self.min_spacing = min_spacing
        self._points: deque[GeodeticPoint] = deque(maxlen=max_points)
        self._segments: tuple[Segment, ...] | None = None

    def __len__(self) -> int:
        return len(self._points)

    @property
    def points(self) -> tuple[GeodeticPoint, ...]:
        return tuple(self._points)

    @property
    def latest(self) -> GeodeticPoint | None:
        return self._points[-1] if self._points else None

    def clear(self) -> None:
        self._points.clear()
        self._segments = None

    def append(self, point: GeodeticPoint) -> bool:
        """Add a point, evicting those that fall outside the window.

        A point earlier than the newest stored point means time was moved
        backwards; the track is cleared and restarted from that point.

        Returns:
            True if the point was stored.
        """
        last = self.latest
        if last is not None:
            delta = point.time - last.time
            if delta < timedelta(0):
                logger.debug("Track time went backwards (%s -> %s), clearing", last.time, point.time)
                self._points.clear()
            elif delta == timedelta(0) or delta < self.min_spacing:
                return False

        self._points.append(point)
        self._evict(point.time)
        self._segments = None
        return True

    def extend(self, points: Iterable[GeodeticPoint]) -> int:
        return sum(1 for point in points if self.append(point))

    def set_window(self, window: timedelta | None) -> None:
        self.window = window
        latest = self.latest
        if latest is not None:
            self._evict(latest.time)
            self._segments = None

    def _evict(self, newest: datetime) -> None:
        if self.window is None:
            return
        cutoff = newest - self.window
        while self._points and self._points[0].time < cutoff:
            self._points.popleft()

    def segments(self) -> tuple[Segment, ...]:
        """Stored points split at antimeridian crossings (cached until the next append)."""
        if self._segments is None:
            self._segments = split_segments(self._points)
        return self._segments


def sample_track(
    record: ElementRecord,
    start: datetime,
    end: datetime,
    step: timedelta,
    **propagate_kwargs,
) -> list[GeodeticPoint]:
    """Sub-satellite points from ``start`` to ``end`` inclusive.

    Samples whose propagation fails are skipped.
    """
    if step <= timedelta(0):
        raise ValueError("step must be positive")
    points: list[GeodeticPoint] = []
    skipped = 0
    t = start
    while t <= end:
        try:
            points.append(to_geodetic(propagate(record, t, **propagate_kwargs)))
        except PropagationError:
            skipped += 1
        t += step
    if skipped:
        logger.debug("Skipped %d failing samples for NORAD %d", skipped, record.catalog_id)
    return points


def forecast_track(
    record: ElementRecord,
    start: datetime,
    duration: timedelta | None = None,
    step: timedelta = timedelta(seconds=DEFAULT_FORECAST_STEP_S),
    **propagate_kwargs,
) -> tuple[Segment, ...]:
    """Predicted ground track ahead of ``start``.

    Args:
        record: Element set to propagate.
        start: First sample time.
        duration: How far ahead to predict. Defaults to one orbital period.
        step: Sample spacing.

    Returns:
        Predicted points split at antimeridian crossings.
    """
    if duration is None:
        duration = record.orbital_period
    points = sample_track(record, start, start + duration, step, **propagate_kwargs)
    return split_segments(points)
