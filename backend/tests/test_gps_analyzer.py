"""
Tests pour l'analyse GPS : arrets, traversee de route et score d'effort.
"""
import pytest
from datetime import datetime, timedelta

from weirdstats.domain.gps import (
    LatLon,
    Point,
    Road,
    StopOptions,
    compute_effort,
    detect_road_crossing,
    detect_stops,
    find_stop_end_index,
    haversine_meters,
    heart_rate_reference,
)
from weirdstats.domain.gps.crossing import segments_intersect
from weirdstats.domain.gps.effort import EFFORT_HR_REF_FALLBACK, normalize_activity_type, sport_factor

T0 = datetime(2024, 1, 1, 10, 0, 0)


def _track(speeds, step_s=30, lat=0.0, lon=0.0, lon_step=0.0):
    """Trace synthetique : un point toutes les `step_s` secondes."""
    return [
        Point(lat=lat, lon=lon + i * lon_step, time=T0 + timedelta(seconds=i * step_s), speed=speed)
        for i, speed in enumerate(speeds)
    ]


# ============================================================
# Detection des arrets
# ============================================================

class TestDetectStops:
    def test_empty_track(self):
        assert detect_stops([]) == []

    def test_single_stop_of_sixty_seconds(self):
        points = _track([5, 5, 0, 0, 0, 5])
        stops = detect_stops(points)
        assert len(stops) == 1
        assert stops[0].duration == timedelta(seconds=60)
        assert stops[0].start_time == T0 + timedelta(seconds=60)

    def test_stop_position_is_first_stopped_point(self):
        points = _track([5, 0, 0, 0, 5], lon_step=0.001)
        stops = detect_stops(points)
        assert len(stops) == 1
        assert stops[0].lon == pytest.approx(0.001)

    def test_short_stop_is_ignored(self):
        points = _track([5, 0, 0, 5])
        assert detect_stops(points) == []

    def test_min_duration_is_inclusive(self):
        points = _track([5, 0, 0, 5], step_s=30)
        stops = detect_stops(points, StopOptions(min_duration=timedelta(seconds=30)))
        assert len(stops) == 1
        assert stops[0].duration == timedelta(seconds=30)

    def test_threshold_is_inclusive(self):
        points = _track([5, 0.5, 0.5, 0.5, 5])
        assert len(detect_stops(points)) == 1

    def test_trailing_stop_is_closed(self):
        points = _track([5, 0, 0, 0])
        stops = detect_stops(points)
        assert len(stops) == 1
        assert stops[0].duration == timedelta(seconds=60)

    def test_multiple_stops(self):
        points = _track([5, 0, 0, 0, 5, 5, 0, 0, 0, 0, 5])
        stops = detect_stops(points)
        assert [s.duration for s in stops] == [timedelta(seconds=60), timedelta(seconds=90)]


# ============================================================
# Traversee de route
# ============================================================

class TestSegmentsIntersect:
    def test_crossing(self):
        assert segments_intersect((0, 0, 2, 2), (0, 2, 2, 0))

    def test_parallel(self):
        assert not segments_intersect((0, 0, 2, 0), (0, 1, 2, 1))

    def test_touching_endpoint(self):
        assert segments_intersect((0, 0, 1, 1), (1, 1, 2, 0))

    def test_collinear_overlap(self):
        assert segments_intersect((0, 0, 2, 0), (1, 0, 3, 0))

    def test_collinear_disjoint(self):
        assert not segments_intersect((0, 0, 1, 0), (2, 0, 3, 0))


class TestDetectRoadCrossing:
    def _road(self, name="Rue de la Paix", highway="residential"):
        # Route nord-sud a lon=0.0001
        return Road(
            id=1,
            name=name,
            highway=highway,
            geometry=[LatLon(lat=-0.001, lon=0.0001), LatLon(lat=0.001, lon=0.0001)],
        )

    def test_path_crosses_road(self):
        # ~11 m entre chaque point le long de l'equateur
        points = _track([0, 5, 5, 5], lon_step=0.0001)
        result = detect_road_crossing(points, 0, [self._road()])
        assert result.crossed
        assert result.road_name == "Rue de la Paix"
        assert result.road_type == "residential"

    def test_path_does_not_reach_road(self):
        points = _track([0, 5, 5, 5], lon_step=0.0001)
        far_road = Road(id=2, geometry=[LatLon(lat=-0.001, lon=0.01), LatLon(lat=0.001, lon=0.01)])
        assert not detect_road_crossing(points, 0, [far_road]).crossed

    def test_index_out_of_bounds(self):
        points = _track([0, 5], lon_step=0.0001)
        assert not detect_road_crossing(points, -1, [self._road()]).crossed
        assert not detect_road_crossing(points, 1, [self._road()]).crossed

    def test_no_roads(self):
        points = _track([0, 5, 5], lon_step=0.0001)
        assert not detect_road_crossing(points, 0, []).crossed

    def test_single_point_geometry_is_skipped(self):
        points = _track([0, 5, 5], lon_step=0.0001)
        road = Road(id=3, geometry=[LatLon(lat=0.0, lon=0.0001)])
        assert not detect_road_crossing(points, 0, [road]).crossed


class TestFindStopEndIndex:
    def test_first_point_above_threshold_after_start(self):
        points = _track([5, 0, 0, 0, 5, 5])
        assert find_stop_end_index(points, 30, 0.5) == 4

    def test_no_point_above_threshold(self):
        points = _track([5, 0, 0, 0])
        assert find_stop_end_index(points, 30, 0.5) == -1

    def test_empty(self):
        assert find_stop_end_index([], 0, 0.5) == -1


class TestHaversine:
    def test_zero(self):
        assert haversine_meters(48.85, 2.35, 48.85, 2.35) == 0

    def test_one_degree_of_latitude(self):
        assert haversine_meters(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)


# ============================================================
# Score d'effort
# ============================================================

class TestEffort:
    def test_normalize_activity_type(self):
        assert normalize_activity_type("Trail Run") == "trailrun"
        assert normalize_activity_type("trail_run") == "trailrun"
        assert normalize_activity_type("trail-run") == "trailrun"
        assert normalize_activity_type("") == ""

    def test_unknown_sport_factor(self):
        assert sport_factor("Curling") == 1.0

    def test_zero_moving_time(self):
        assert compute_effort(0, "Run", 150, 140) == 0.0

    def test_without_heart_rate(self):
        assert compute_effort(3600, "Ride") == pytest.approx(60 * 1.6)

    def test_heart_rate_at_reference(self):
        assert compute_effort(1800, "Run", 140, 140) == pytest.approx(30 * 2.0)

    def test_heart_rate_factor_is_clamped(self):
        assert compute_effort(600, "Walk", 400, 100) == pytest.approx(10 * 2.5)
        assert compute_effort(600, "Walk", 10, 100) == pytest.approx(10 * 0.6)

    def test_missing_reference_uses_fallback(self):
        assert compute_effort(600, "Walk", EFFORT_HR_REF_FALLBACK, None) == pytest.approx(10.0)

    def test_heart_rate_reference_median(self):
        assert heart_rate_reference([150, 130, 0, 140]) == 140.0

    def test_heart_rate_reference_empty(self):
        assert heart_rate_reference([]) == EFFORT_HR_REF_FALLBACK
