"""Tests for the tracking scheduler."""
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from orbtrack.core.catalog import Catalog, CatalogSlot
from orbtrack.core.propagation import Decayed, InvalidElements, NonConvergent, propagate
from orbtrack.core.scheduler import (
    ObjectStatus,
    SimulationClock,
    TrackerConfig,
    TrackingScheduler,
    TrackingSnapshot,
)
from orbtrack.core.tle import ElementRecord, parse_element_set

ISS_LINE1 = "1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9997"
ISS_LINE2 = "2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439592"

CSS_LINE1 = "1 48274U 21035A   24045.50261574  .00021540  00000-0  25163-3 0  9993"
CSS_LINE2 = "2 48274  41.4681 279.1498 0005372 149.8847 345.3740 15.62096269157015"

HST_LINE1 = "1 20580U 90037B   24045.55478014  .00001456  00000-0  73052-4 0  9990"
HST_LINE2 = "2 20580  28.4701  41.0696 0002622 348.3544 140.2428 15.09435694872912"

T0 = datetime(2024, 2, 14, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def records() -> list[ElementRecord]:
    return [
        parse_element_set(ISS_LINE1, ISS_LINE2, name="ISS (ZARYA)"),
        parse_element_set(CSS_LINE1, CSS_LINE2, name="CSS (TIANHE)"),
        parse_element_set(HST_LINE1, HST_LINE2, name="HST"),
    ]


@pytest.fixture
def slot(records: list[ElementRecord]) -> CatalogSlot:
    return CatalogSlot(Catalog(records))


def _failing(failures: dict[int, type]):
    """Propagator that raises the mapped error class for selected ids."""

    def propagator(record: ElementRecord, when: datetime, **kwargs):
        error = failures.get(record.catalog_id)
        if error is not None:
            raise error("forced failure", record.catalog_id)
        return propagate(record, when, **kwargs)

    return propagator


class TestTrackerConfig:
    def test_defaults(self) -> None:
        config = TrackerConfig()
        assert config.tick_interval == timedelta(seconds=1)
        assert config.track_window is None
        assert config.backfill is False

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"tick_interval": timedelta(0)},
            {"track_max_points": 0},
            {"max_kepler_iterations": 0},
        ],
    )
    def test_rejects_invalid(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            TrackerConfig(**kwargs)


class TestSimulationClock:
    def test_follows_source(self) -> None:
        clock = SimulationClock(lambda: T0)
        assert clock.now() == T0

    def test_set_time_and_shift(self) -> None:
        current = [T0]
        clock = SimulationClock(lambda: current[0])
        clock.set_time(T0 + timedelta(days=1))
        assert clock.now() == T0 + timedelta(days=1)
        current[0] += timedelta(seconds=10)
        assert clock.now() == T0 + timedelta(days=1, seconds=10)
        clock.shift(timedelta(hours=-1))
        assert clock.offset == timedelta(days=1, hours=-1)
        clock.reset()
        assert clock.now() == current[0]


class TestTick:
    def test_first_tick(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot, clock=SimulationClock(lambda: T0))
        assert scheduler.latest() is None

        snapshot = scheduler.tick()
        assert scheduler.latest() is snapshot
        assert snapshot.sequence == 1
        assert snapshot.time == T0
        assert set(snapshot.objects) == {25544, 48274, 20580}
        assert snapshot.count(ObjectStatus.PROPAGATED) == 3
        iss = snapshot.get(25544)
        assert iss.valid
        assert iss.point.time == T0
        assert iss.state.time == T0
        assert iss.segments == ((iss.point,),)

    def test_every_object_uses_tick_time(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot)
        snapshot = scheduler.tick(T0)
        assert {obj.state.time for obj in snapshot.objects.values()} == {T0}

    def test_naive_time_is_utc(self, slot: CatalogSlot) -> None:
        snapshot = TrackingScheduler(slot).tick(T0.replace(tzinfo=None))
        assert snapshot.time == T0

    def test_snapshot_is_read_only(self, slot: CatalogSlot) -> None:
        snapshot = TrackingScheduler(slot).tick(T0)
        with pytest.raises(TypeError):
            snapshot.objects[1] = snapshot.get(25544)  # type: ignore[index]

    def test_published_snapshot_not_mutated_by_later_ticks(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot, TrackerConfig(track_spacing=timedelta(0)))
        first = scheduler.tick(T0)
        first_segments = first.get(25544).segments
        scheduler.tick(T0 + timedelta(minutes=1))
        assert first.get(25544).segments == first_segments
        assert first.get(25544).point.time == T0

    def test_track_grows(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot, TrackerConfig(track_spacing=timedelta(seconds=30)))
        for seconds in range(0, 300, 10):
            scheduler.tick(T0 + timedelta(seconds=seconds))
        points = [p for s in scheduler.latest().get(25544).segments for p in s]
        assert len(points) == 10

    def test_track_window_default_is_one_period(self, slot: CatalogSlot, records: list[ElementRecord]) -> None:
        scheduler = TrackingScheduler(slot, TrackerConfig(track_spacing=timedelta(minutes=1)))
        for minutes in range(0, 200):
            scheduler.tick(T0 + timedelta(minutes=minutes))
        points = [p for s in scheduler.latest().get(25544).segments for p in s]
        assert points[-1].time - points[0].time <= records[0].orbital_period

    def test_time_reversal_restarts_track(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot, TrackerConfig(track_spacing=timedelta(0)))
        for minutes in range(5):
            scheduler.tick(T0 + timedelta(minutes=minutes))
        snapshot = scheduler.tick(T0 - timedelta(hours=1))
        points = [p for s in snapshot.get(25544).segments for p in s]
        assert [p.time for p in points] == [T0 - timedelta(hours=1)]

    def test_subscribers(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot)
        seen: list[TrackingSnapshot] = []
        unsubscribe = scheduler.subscribe(seen.append)
        scheduler.tick(T0)
        unsubscribe()
        scheduler.tick(T0 + timedelta(seconds=1))
        assert [s.sequence for s in seen] == [1]

    def test_failing_subscriber_does_not_stop_tick(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot)
        seen: list[int] = []

        def broken(_: TrackingSnapshot) -> None:
            raise RuntimeError("boom")

        scheduler.subscribe(broken)
        scheduler.subscribe(lambda s: seen.append(s.sequence))
        scheduler.tick(T0)
        assert seen == [1]


class TestFailures:
    @pytest.mark.parametrize(
        "error, status",
        [
            (NonConvergent, ObjectStatus.STALE),
            (Decayed, ObjectStatus.DECAYED),
            (InvalidElements, ObjectStatus.PARSE_INVALID),
        ],
    )
    def test_failure_is_isolated(self, slot: CatalogSlot, error: type, status: ObjectStatus) -> None:
        scheduler = TrackingScheduler(slot, propagator=_failing({48274: error}))
        snapshot = scheduler.tick(T0)
        css = snapshot.get(48274)
        assert css.status is status
        assert not css.valid
        assert css.error == "forced failure"
        assert css.state is None
        assert snapshot.get(25544).valid
        assert snapshot.get(20580).valid

    def test_unexpected_error_is_isolated(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot, propagator=_failing({48274: RuntimeError}))
        snapshot = scheduler.tick(T0)
        css = snapshot.get(48274)
        assert css.status is ObjectStatus.STALE
        assert "forced failure" in css.error
        assert snapshot.get(25544).valid
        assert snapshot.get(20580).valid

    def test_last_good_state_retained(self, slot: CatalogSlot) -> None:
        failures: dict[int, type] = {}
        scheduler = TrackingScheduler(
            slot, TrackerConfig(track_spacing=timedelta(0)), propagator=_failing(failures)
        )
        good = scheduler.tick(T0).get(25544)
        failures[25544] = NonConvergent
        stale = scheduler.tick(T0 + timedelta(minutes=1)).get(25544)
        assert stale.status is ObjectStatus.STALE
        assert stale.state is good.state
        assert stale.point is good.point
        assert stale.segments == good.segments

        del failures[25544]
        recovered = scheduler.tick(T0 + timedelta(minutes=2)).get(25544)
        assert recovered.valid
        assert recovered.error is None
        assert len([p for s in recovered.segments for p in s]) == 2

    def test_real_invalid_elements(self, records: list[ElementRecord]) -> None:
        broken = replace(records[0], eccentricity=1.0)
        slot = CatalogSlot(Catalog([broken, records[1]]))
        snapshot = TrackingScheduler(slot).tick(T0)
        assert snapshot.get(25544).status is ObjectStatus.PARSE_INVALID
        assert snapshot.get(48274).valid


class TestCatalogRefresh:
    def test_tick_uses_one_catalog_version(self, slot: CatalogSlot, records: list[ElementRecord]) -> None:
        """A refresh published mid-tick is not visible until the next tick."""
        extra = parse_element_set(
            "1 28654U 05018A   24045.52083333  .00000149  00000-0  10834-3 0  9994",
            "2 28654  98.9710 100.7890 0014048 313.6230  46.3750 14.12905012970120",
        )
        updated_iss = replace(records[0], element_set_number=1000)
        used: list[ElementRecord] = []
        refreshed = threading.Event()

        def propagator(record: ElementRecord, when: datetime, **kwargs):
            used.append(record)
            if not refreshed.is_set():
                refreshed.set()
                slot.refresh([updated_iss, extra], remove=[20580])
            return propagate(record, when, **kwargs)

        scheduler = TrackingScheduler(slot, propagator=propagator)
        old_catalog = slot.current()
        snapshot = scheduler.tick(T0)

        assert snapshot.catalog is old_catalog
        assert set(snapshot.objects) == {25544, 48274, 20580}
        for record in used:
            assert record is old_catalog[record.catalog_id]

        following = scheduler.tick(T0 + timedelta(seconds=1))
        assert following.catalog.version == old_catalog.version + 1
        assert set(following.objects) == {25544, 48274, 28654}
        assert following.get(25544).record is updated_iss

    def test_removed_objects_are_dropped(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot)
        scheduler.tick(T0)
        slot.refresh([], remove=[25544])
        snapshot = scheduler.tick(T0 + timedelta(seconds=1))
        assert snapshot.get(25544) is None
        assert len(snapshot.objects) == 2

    def test_refreshed_record_keeps_track(self, slot: CatalogSlot, records: list[ElementRecord]) -> None:
        scheduler = TrackingScheduler(slot, TrackerConfig(track_spacing=timedelta(0)))
        scheduler.tick(T0)
        slot.refresh([replace(records[0], element_set_number=1000)])
        snapshot = scheduler.tick(T0 + timedelta(minutes=1))
        assert len([p for s in snapshot.get(25544).segments for p in s]) == 2


class TestBackfill:
    def test_backfill_fills_window(self, slot: CatalogSlot) -> None:
        config = TrackerConfig(
            backfill=True,
            track_window=timedelta(minutes=10),
            track_spacing=timedelta(minutes=1),
        )
        snapshot = TrackingScheduler(slot, config).tick(T0)
        points = [p for s in snapshot.get(25544).segments for p in s]
        assert len(points) == 11
        assert points[0].time == T0 - timedelta(minutes=10)
        assert points[-1].time == T0


class TestLifecycle:
    def test_start_stop(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot, TrackerConfig(tick_interval=timedelta(milliseconds=10)))
        ticked = threading.Event()
        scheduler.subscribe(lambda s: ticked.set() if s.sequence >= 3 else None)
        scheduler.start()
        try:
            assert scheduler.is_running
            assert ticked.wait(5.0)
        finally:
            scheduler.stop(timeout=5.0)
        assert not scheduler.is_running
        sequence = scheduler.latest().sequence
        assert sequence >= 3

    def test_pause_and_resume(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot, TrackerConfig(tick_interval=timedelta(milliseconds=10)))
        first = threading.Event()
        scheduler.subscribe(lambda s: first.set())
        scheduler.start()
        try:
            assert first.wait(5.0)
            scheduler.pause()
            assert scheduler.is_paused
            # let an in-flight tick finish
            threading.Event().wait(0.2)
            paused_at = scheduler.latest().sequence
            threading.Event().wait(0.2)
            assert scheduler.latest().sequence == paused_at

            resumed = threading.Event()
            scheduler.subscribe(lambda s: resumed.set() if s.sequence > paused_at else None)
            scheduler.resume()
            assert not scheduler.is_paused
            assert resumed.wait(5.0)
        finally:
            scheduler.stop(timeout=5.0)

    def test_stop_while_paused(self, slot: CatalogSlot) -> None:
        scheduler = TrackingScheduler(slot, TrackerConfig(tick_interval=timedelta(milliseconds=10)))
        scheduler.pause()
        scheduler.start()
        scheduler.stop(timeout=5.0)
        assert not scheduler.is_running
        assert scheduler.latest() is None
