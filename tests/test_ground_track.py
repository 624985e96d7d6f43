"""Tests for ground track buffers and forecasts."""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from orbtrack.core.frames import GeodeticPoint
from orbtrack.core.ground_track import GroundTrack, forecast_track, sample_track, split_segments
from orbtrack.core.tle import ElementRecord, parse_element_set

ISS_LINE1 = "1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9997"
ISS_LINE2 = "2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439592"

T0 = datetime(2024, 2, 14, 12, 0, tzinfo=timezone.utc)


def _point(seconds: float, lon: float = 0.0, lat: float = 0.0) -> GeodeticPoint:
    return GeodeticPoint(lat, lon, 400.0, T0 + timedelta(seconds=seconds))


@pytest.fixture
def iss() -> ElementRecord:
    return parse_element_set(ISS_LINE1, ISS_LINE2)


class TestSplitSegments:
    def test_empty(self) -> None:
        assert split_segments([]) == ()

    def test_no_crossing(self) -> None:
        points = [_point(i, lon) for i, lon in enumerate([10.0, 20.0, 30.0])]
        assert split_segments(points) == (tuple(points),)

    def test_antimeridian_crossing(self) -> None:
        points = [_point(0, 170.0), _point(1, 178.0), _point(2, -175.0), _point(3, -165.0)]
        segments = split_segments(points)
        assert len(segments) == 2
        assert segments[0] == tuple(points[:2])
        assert segments[1] == tuple(points[2:])

    def test_westbound_crossing(self) -> None:
        points = [_point(0, -170.0), _point(1, 175.0)]
        assert len(split_segments(points)) == 2


class TestGroundTrack:
    def test_append_in_order(self) -> None:
        track = GroundTrack(min_spacing=timedelta(0))
        for i in range(5):
            assert track.append(_point(i * 10))
        assert len(track) == 5
        assert track.latest == _point(40)

    def test_window_evicts_old_points(self) -> None:
        track = GroundTrack(window=timedelta(seconds=60), min_spacing=timedelta(0))
        for i in range(10):
            track.append(_point(i * 20))
        times = [p.time for p in track.points]
        assert times[0] >= times[-1] - timedelta(seconds=60)
        assert len(track) == 4

    def test_max_points_cap(self) -> None:
        track = GroundTrack(max_points=3, min_spacing=timedelta(0))
        track.extend(_point(i) for i in range(10))
        assert [p.time for p in track.points] == [_point(i).time for i in (7, 8, 9)]

    def test_duplicate_time_skipped(self) -> None:
        track = GroundTrack(min_spacing=timedelta(0))
        assert track.append(_point(0))
        assert not track.append(_point(0, lon=5.0))
        assert len(track) == 1

    def test_min_spacing(self) -> None:
        track = GroundTrack(min_spacing=timedelta(seconds=30))
        assert track.extend(_point(i * 10) for i in range(10)) == 4
        assert [p.time for p in track.points] == [_point(s).time for s in (0, 30, 60, 90)]

    def test_time_reversal_clears(self) -> None:
        track = GroundTrack(min_spacing=timedelta(0))
        track.extend(_point(i * 10) for i in range(5))
        assert track.append(_point(-100))
        assert track.points == (_point(-100),)

    def test_points_stay_ordered(self) -> None:
        track = GroundTrack(window=timedelta(minutes=5), min_spacing=timedelta(0))
        for seconds in [0, 10, 20, 5, 15, 25, 35]:
            track.append(_point(seconds))
        times = [p.time for p in track.points]
        assert times == sorted(times)
        assert len(set(times)) == len(times)

    def test_set_window_trims(self) -> None:
        track = GroundTrack(min_spacing=timedelta(0))
        track.extend(_point(i * 60) for i in range(10))
        track.set_window(timedelta(minutes=2))
        assert len(track) == 3

    def test_segments_cached_until_append(self) -> None:
        track = GroundTrack(min_spacing=timedelta(0))
        track.extend([_point(0, 170.0), _point(1, -170.0)])
        first = track.segments()
        assert first is track.segments()
        assert len(first) == 2
        track.append(_point(2, -160.0))
        assert len(track.segments()[-1]) == 2

    def test_clear(self) -> None:
        track = GroundTrack()
        track.append(_point(0))
        track.clear()
        assert len(track) == 0
        assert track.latest is None
        assert track.segments() == ()

    def test_invalid_max_points(self) -> None:
        with pytest.raises(ValueError):
            GroundTrack(max_points=0)


class TestForecast:
    def test_sample_track_inclusive(self, iss: ElementRecord) -> None:
        points = sample_track(iss, iss.epoch, iss.epoch + timedelta(minutes=10), timedelta(minutes=1))
        assert len(points) == 11
        assert points[-1].time == iss.epoch + timedelta(minutes=10)

    def test_sample_track_rejects_nonpositive_step(self, iss: ElementRecord) -> None:
        with pytest.raises(ValueError):
            sample_track(iss, iss.epoch, iss.epoch, timedelta(0))

    def test_sample_track_skips_failures(self, iss: ElementRecord) -> None:
        broken = replace(iss, eccentricity=1.2)
        assert sample_track(broken, iss.epoch, iss.epoch + timedelta(minutes=5), timedelta(minutes=1)) == []

    def test_forecast_one_period(self, iss: ElementRecord) -> None:
        segments = forecast_track(iss, iss.epoch)
        points = [p for segment in segments for p in segment]
        # about 93 minutes at one-minute spacing
        assert 90 <= len(points) <= 95
        assert points[0].time == iss.epoch
        assert points[-1].time <= iss.epoch + iss.orbital_period

    def test_forecast_splits_at_antimeridian(self, iss: ElementRecord) -> None:
        segments = forecast_track(iss, iss.epoch, duration=timedelta(hours=3))
        assert len(segments) >= 2
        for segment in segments:
            for a, b in zip(segment, segment[1:]):
                assert abs(b.longitude_deg - a.longitude_deg) <= 180.0

    def test_forecast_custom_duration(self, iss: ElementRecord) -> None:
        segments = forecast_track(
            iss, iss.epoch, duration=timedelta(minutes=20), step=timedelta(minutes=5)
        )
        assert sum(len(s) for s in segments) == 5
