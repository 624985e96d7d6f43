"""Periodic tracking of every object in the catalog.

:class:`TrackingScheduler` drives a background thread on a fixed cadence.
Each tick reads one catalog snapshot and one target time, propagates every
object, updates its ground track and publishes an immutable
:class:`TrackingSnapshot`. Readers call :meth:`TrackingScheduler.latest`
and never see a half-built tick.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping

from orbtrack.core.catalog import Catalog, CatalogSlot
from orbtrack.core.frames import GeodeticPoint, to_geodetic
from orbtrack.core.ground_track import GroundTrack, Segment
from orbtrack.core.propagation import (
    Decayed,
    InvalidElements,
    NonConvergent,
    OrbitState,
    PropagationError,
    propagate,
)
from orbtrack.core.tle import ElementRecord
from orbtrack.utils.constants import (
    DEFAULT_KEPLER_MAX_ITERATIONS,
    DEFAULT_KEPLER_TOLERANCE,
    DEFAULT_TICK_INTERVAL_S,
    DEFAULT_TRACK_MAX_POINTS,
    DEFAULT_TRACK_SPACING_S,
)

logger = logging.getLogger(__name__)

Propagator = Callable[..., OrbitState]
Subscriber = Callable[["TrackingSnapshot"], None]


@dataclass(frozen=True)
class TrackerConfig:
    """Tracking parameters.

    Attributes:
        tick_interval: Time between ticks of the background thread.
        track_window: Length of each trailing ground track. ``None`` uses
            one orbital period of the object.
        track_max_points: Hard cap on stored points per track.
        track_spacing: Minimum time between stored track points.
        backfill: Fill a new object's track with past positions on first sight.
        kepler_tolerance: Residual (rad) at which the Kepler solve stops.
        max_kepler_iterations: Kepler iteration budget per propagation.
    """

    tick_interval: timedelta = timedelta(seconds=DEFAULT_TICK_INTERVAL_S)
    track_window: timedelta | None = None
    track_max_points: int = DEFAULT_TRACK_MAX_POINTS
    track_spacing: timedelta = timedelta(seconds=DEFAULT_TRACK_SPACING_S)
    backfill: bool = False
    kepler_tolerance: float = DEFAULT_KEPLER_TOLERANCE
    max_kepler_iterations: int = DEFAULT_KEPLER_MAX_ITERATIONS

    def __post_init__(self) -> None:
        if self.tick_interval <= timedelta(0):
            raise ValueError("tick_interval must be positive")
        if self.track_max_points < 1:
            raise ValueError("track_max_points must be positive")
        if self.max_kepler_iterations < 1:
            raise ValueError("max_kepler_iterations must be at least 1")


class SimulationClock:
    """Wall clock plus an operator-controlled offset.

    The offset only changes the time fed to the propagator; tick cadence
    always follows real time.

    Args:
        now_fn: Source of the current UTC time. Defaults to the system clock.
    """

    def __init__(self, now_fn: Callable[[], datetime] | None = None) -> None:
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self._offset = timedelta(0)
        self._lock = threading.Lock()

    @property
    def offset(self) -> timedelta:
        return self._offset

    def now(self) -> datetime:
        return self._now_fn() + self._offset

    def set_time(self, when: datetime) -> None:
        """Make :meth:`now` return ``when`` at this instant and advance from there."""
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        with self._lock:
            self._offset = when - self._now_fn()

    def shift(self, delta: timedelta) -> None:
        with self._lock:
            self._offset += delta

    def reset(self) -> None:
        with self._lock:
            self._offset = timedelta(0)


class ObjectStatus(Enum):
    """Tracking status of one object after the latest tick."""

    PENDING = "pending"
    PROPAGATED = "propagated"
    STALE = "stale"
    DECAYED = "decayed"
    PARSE_INVALID = "parse-invalid"


@dataclass(frozen=True)
class ObjectSnapshot:
    """Read-only view of one tracked object.

    ``state`` and ``point`` are the last successful results and survive
    later failures; ``status`` and ``error`` describe the latest attempt.
    """

    catalog_id: int
    record: ElementRecord
    status: ObjectStatus
    state: OrbitState | None = None
    point: GeodeticPoint | None = None
    segments: tuple[Segment, ...] = ()
    error: str | None = None

    @property
    def valid(self) -> bool:
        return self.status is ObjectStatus.PROPAGATED


@dataclass(frozen=True)
class TrackingSnapshot:
    """Everything computed by one tick.

    Attributes:
        time: Target time used for every object.
        sequence: Tick counter, starting at 1.
        catalog: The catalog the tick read.
        objects: Per-object results keyed by catalog id.
    """

    time: datetime
    sequence: int
    catalog: Catalog
    objects: Mapping[int, ObjectSnapshot] = field(default_factory=dict)

    def get(self, catalog_id: int) -> ObjectSnapshot | None:
        return self.objects.get(catalog_id)

    def count(self, status: ObjectStatus) -> int:
        return sum(1 for obj in self.objects.values() if obj.status is status)


class _TrackedObject:
    """Mutable per-object state owned by the scheduler thread."""

    __slots__ = ("record", "status", "state", "point", "track", "error")

    def __init__(self, record: ElementRecord, track: GroundTrack) -> None:
        self.record = record
        self.status = ObjectStatus.PENDING
        self.state: OrbitState | None = None
        self.point: GeodeticPoint | None = None
        self.track = track
        self.error: str | None = None

    def snapshot(self, catalog_id: int) -> ObjectSnapshot:
        return ObjectSnapshot(
            catalog_id=catalog_id,
            record=self.record,
            status=self.status,
            state=self.state,
            point=self.point,
            segments=self.track.segments(),
            error=self.error,
        )


class TrackingScheduler:
    """Fixed-cadence tracker for every object in a :class:`CatalogSlot`.

    Args:
        slot: Source of the current catalog.
        config: Tracking parameters.
        clock: Source of the propagation time.
        propagator: Callable with the signature of
            :func:`~orbtrack.core.propagation.propagate`.
    """

    def __init__(
        self,
        slot: CatalogSlot,
        config: TrackerConfig | None = None,
        clock: SimulationClock | None = None,
        propagator: Propagator = propagate,
    ) -> None:
        self._slot = slot
        self.config = config or TrackerConfig()
        self.clock = clock or SimulationClock()
        self._propagator = propagator
        self._objects: dict[int, _TrackedObject] = {}
        self._latest: TrackingSnapshot | None = None
        self._sequence = 0
        self._tick_lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._paused = threading.Event()
        self._wake = threading.Event()

    # --- Reading -------------------------------------------------------

    def latest(self) -> TrackingSnapshot | None:
        """Last completed snapshot, or None before the first tick."""
        return self._latest

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with every new snapshot; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # --- Ticking -------------------------------------------------------

    def tick(self, when: datetime | None = None) -> TrackingSnapshot:
        """Propagate every catalog object to one time and publish the result.

        Args:
            when: Target time. Defaults to the clock's current time.

        Returns:
            The published snapshot.
        """
        with self._tick_lock:
            catalog = self._slot.current()
            now = when or self.clock.now()
            if now.tzinfo is None:
                now = now.replace(tzinfo=timezone.utc)

            for catalog_id in [cid for cid in self._objects if cid not in catalog]:
                del self._objects[catalog_id]
                logger.debug("Stopped tracking NORAD %d (removed from catalog)", catalog_id)

            for catalog_id, record in catalog.items():
                self._update(catalog_id, record, now)

            self._sequence += 1
            snapshot = TrackingSnapshot(
                time=now,
                sequence=self._sequence,
                catalog=catalog,
                objects=MappingProxyType(
                    {cid: tracked.snapshot(cid) for cid, tracked in self._objects.items()}
                ),
            )
            self._latest = snapshot

        logger.debug(
            "Tick %d at %s: %d objects, %d propagated",
            snapshot.sequence,
            now.isoformat(),
            len(snapshot.objects),
            snapshot.count(ObjectStatus.PROPAGATED),
        )
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber %r failed", callback)
        return snapshot

    def _window_for(self, record: ElementRecord) -> timedelta | None:
        if self.config.track_window is not None:
            return self.config.track_window
        if record.mean_motion_rev_per_day <= 0.0:
            return None
        return record.orbital_period

    def _propagate(self, record: ElementRecord, when: datetime) -> OrbitState:
        return self._propagator(
            record,
            when,
            kepler_tolerance=self.config.kepler_tolerance,
            max_kepler_iterations=self.config.max_kepler_iterations,
        )

    def _update(self, catalog_id: int, record: ElementRecord, now: datetime) -> None:
        tracked = self._objects.get(catalog_id)
        if tracked is None:
            track = GroundTrack(
                window=self._window_for(record),
                max_points=self.config.track_max_points,
                min_spacing=self.config.track_spacing,
            )
            tracked = self._objects[catalog_id] = _TrackedObject(record, track)
            if self.config.backfill:
                self._backfill(tracked, now)
        elif tracked.record is not record:
            tracked.record = record
            tracked.track.set_window(self._window_for(record))

        try:
            state = self._propagate(record, now)
        except NonConvergent as e:
            logger.warning("Kepler solve did not converge for NORAD %d: %s", catalog_id, e)
            tracked.status = ObjectStatus.STALE
            tracked.error = str(e)
            return
        except Decayed as e:
            logger.info("NORAD %d has decayed: %s", catalog_id, e)
            tracked.status = ObjectStatus.DECAYED
            tracked.error = str(e)
            return
        except InvalidElements as e:
            logger.info("NORAD %d has invalid elements: %s", catalog_id, e)
            tracked.status = ObjectStatus.PARSE_INVALID
            tracked.error = str(e)
            return
        except Exception as e:
            logger.exception("Propagation of NORAD %d failed unexpectedly", catalog_id)
            tracked.status = ObjectStatus.STALE
            tracked.error = str(e)
            return

        try:
            point = to_geodetic(state)
        except Exception as e:
            logger.exception("Coordinate transform of NORAD %d failed", catalog_id)
            tracked.status = ObjectStatus.STALE
            tracked.error = str(e)
            return
        tracked.state = state
        tracked.point = point
        tracked.status = ObjectStatus.PROPAGATED
        tracked.error = None
        tracked.track.append(point)

    def _backfill(self, tracked: _TrackedObject, now: datetime) -> None:
        window = tracked.track.window
        if window is None:
            return
        step = max(self.config.track_spacing, timedelta(seconds=1))
        skipped = 0
        t = now - window
        while t < now:
            try:
                tracked.track.append(to_geodetic(self._propagate(tracked.record, t)))
            except PropagationError:
                skipped += 1
            t += step
        logger.debug(
            "Backfilled %d track points for NORAD %d (%d samples failed)",
            len(tracked.track),
            tracked.record.catalog_id,
            skipped,
        )

    # --- Lifecycle -----------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_paused(self) -> bool:
        return self._paused.is_set()

    def start(self) -> None:
        """Start the background thread."""
        if self.is_running:
            logger.warning("Tracking scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="orbtrack-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "Tracking scheduler started (tick every %.3f s)",
            self.config.tick_interval.total_seconds(),
        )

    def stop(self, timeout: float | None = None) -> None:
        """Stop the background thread after the in-flight tick completes."""
        self._stop_event.set()
        self._wake.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("Tracking scheduler stopped after %d ticks", self._sequence)

    def pause(self) -> None:
        """Suspend ticking at the next tick boundary."""
        self._paused.set()
        logger.info("Tracking paused")

    def resume(self) -> None:
        self._paused.clear()
        self._wake.set()
        logger.info("Tracking resumed")

    def _run(self) -> None:
        interval = self.config.tick_interval.total_seconds()
        deadline = time.monotonic()
        while not self._stop_event.is_set():
            if self._paused.is_set():
                self._wake.wait()
                self._wake.clear()
                deadline = time.monotonic()
                continue

            try:
                self.tick()
            except Exception:
                logger.exception("Tracking tick failed")

            deadline += interval
            delay = deadline - time.monotonic()
            if delay < 0.0:
                logger.debug("Tick overran its interval by %.3f s", -delay)
                deadline = time.monotonic()
                delay = 0.0
            self._stop_event.wait(delay)
