"""
Tests for ETA estimation.

Validates:
- Schedule-only baseline and confidence floor without GPS
- GPS blending, freshness and confidence decay
- Trailing speed fallbacks
- Progress methods and their bounds
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from models import Departure, GeoPoint, RouteInfo
from services.eta_estimator import (
    ETAEstimator,
    ETASettings,
    haversine_km,
    remaining_route_km,
    traveled_route_km,
)


ORIGIN = GeoPoint(lat=40.0, lon=-75.0, name="Central Station")
DESTINATION = GeoPoint(lat=41.0, lon=-75.0, name="Airport Terminal B")


def _departure(waypoint=None, duration=130) -> Departure:
    return Departure(
        id="DEP-1400",
        scheduled_at=datetime(2026, 3, 2, 14, 0),
        capacity=14,
        route=RouteInfo(
            id="RT-1",
            name="Downtown Express",
            origin=ORIGIN,
            destination=DESTINATION,
            waypoint=waypoint,
            duration_minutes=duration,
        ),
    )


def _session(status="EN_ROUTE", trip_started_at=None, delay_minutes=0, arrived_at=None, completed_at=None):
    return SimpleNamespace(
        status=status,
        trip_started_at=trip_started_at,
        delay_minutes=delay_minutes,
        arrived_at=arrived_at,
        completed_at=completed_at,
    )


def _sample(lat, lon, captured_at, speed=None):
    return SimpleNamespace(lat=lat, lon=lon, captured_at=captured_at, speed=speed)


@pytest.fixture
def estimator() -> ETAEstimator:
    return ETAEstimator(ETASettings())


# ============================================================
# TESTS - DISTANCE HELPERS
# ============================================================

class TestDistances:
    """Test haversine and route-relative distances."""

    def test_one_degree_latitude(self):
        assert haversine_km(40.0, -75.0, 41.0, -75.0) == pytest.approx(111.19, abs=0.1)

    def test_zero_distance(self):
        assert haversine_km(40.0, -75.0, 40.0, -75.0) == 0

    def test_remaining_goes_through_unpassed_waypoint(self):
        waypoint = GeoPoint(lat=40.5, lon=-74.5, name="Midtown")
        route = _departure(waypoint=waypoint).route
        direct = haversine_km(40.1, -75.0, 41.0, -75.0)
        assert remaining_route_km(route, 40.1, -75.0) > direct

    def test_remaining_after_waypoint_is_direct(self):
        waypoint = GeoPoint(lat=40.2, lon=-75.0, name="Midtown")
        route = _departure(waypoint=waypoint).route
        assert remaining_route_km(route, 40.6, -75.0) == pytest.approx(haversine_km(40.6, -75.0, 41.0, -75.0))

    def test_traveled_plus_remaining_on_straight_route(self):
        route = _departure().route
        total = traveled_route_km(route, 40.3, -75.0) + remaining_route_km(route, 40.3, -75.0)
        assert total == pytest.approx(haversine_km(40.0, -75.0, 41.0, -75.0))


# ============================================================
# TESTS - SCENARIOS
# ============================================================

class TestEstimateScenarios:
    """End-to-end estimates for representative trips."""

    def test_schedule_only_without_gps(self, estimator):
        now = datetime(2026, 3, 2, 12, 0)

        eta = estimator.estimate(_departure(), None, [], now)

        assert eta.estimated_arrival == datetime(2026, 3, 2, 16, 10)
        assert eta.confidence == 40
        assert eta.progress_percentage == 0
        assert eta.source == "schedule"
        assert eta.minutes_remaining == 250

    def test_midpoint_with_fresh_sample(self, estimator):
        now = datetime(2026, 3, 2, 15, 10)
        session = _session(trip_started_at=datetime(2026, 3, 2, 14, 5))
        samples = [
            _sample(40.5, -75.0, now - timedelta(minutes=1), speed=20.0),
            _sample(40.49, -75.0, now - timedelta(minutes=2), speed=19.0),
        ]

        eta = estimator.estimate(_departure(), session, samples, now)

        assert eta.source == "gps"
        assert eta.confidence == 95
        assert eta.progress_method == "distance"
        assert eta.progress_percentage == pytest.approx(50, abs=1)
        assert eta.progress_cross_check == pytest.approx(50, abs=1)
        assert now < eta.estimated_arrival < datetime(2026, 3, 2, 16, 10)
        assert eta.remaining_distance_km == pytest.approx(55.6, abs=0.5)

    def test_delay_moves_baseline(self, estimator):
        now = datetime(2026, 3, 2, 14, 30)
        session = _session(status="DELAYED", trip_started_at=datetime(2026, 3, 2, 14, 0), delay_minutes=20)

        eta = estimator.estimate(_departure(), session, [], now)

        assert eta.estimated_arrival == datetime(2026, 3, 2, 16, 30)
        assert eta.source == "schedule"

    def test_arrived_reports_actual(self, estimator):
        arrived_at = datetime(2026, 3, 2, 16, 4)
        session = _session(status="ARRIVED", arrived_at=arrived_at)

        eta = estimator.estimate(_departure(), session, [], datetime(2026, 3, 2, 16, 20))

        assert eta.estimated_arrival == arrived_at
        assert eta.confidence == 100
        assert eta.progress_percentage == 100
        assert eta.minutes_remaining == 0
        assert eta.source == "actual"

    def test_stale_sample_falls_back_to_schedule(self, estimator):
        now = datetime(2026, 3, 2, 15, 10)
        session = _session(trip_started_at=datetime(2026, 3, 2, 14, 5))
        samples = [_sample(40.5, -75.0, now - timedelta(minutes=20), speed=20.0)]

        eta = estimator.estimate(_departure(), session, samples, now)

        assert eta.source == "schedule"
        assert eta.estimated_arrival == datetime(2026, 3, 2, 16, 10)
        assert eta.confidence == 75
        assert eta.progress_method == "time"

    def test_time_method_when_configured(self):
        estimator = ETAEstimator(ETASettings(progress_method="time"))
        now = datetime(2026, 3, 2, 14, 31)
        session = _session(trip_started_at=datetime(2026, 3, 2, 14, 5))
        samples = [_sample(40.9, -75.0, now, speed=20.0)]

        eta = estimator.estimate(_departure(), session, samples, now)

        assert eta.progress_method == "time"
        assert eta.progress_percentage == pytest.approx(20, abs=0.1)
        assert eta.progress_cross_check == pytest.approx(90, abs=1)

    def test_disagreeing_methods_are_logged(self, estimator, caplog):
        now = datetime(2026, 3, 2, 14, 31)
        session = _session(trip_started_at=datetime(2026, 3, 2, 14, 5))
        samples = [_sample(40.9, -75.0, now, speed=20.0)]

        with caplog.at_level("WARNING"):
            estimator.estimate(_departure(), session, samples, now)

        assert any("disagrees" in record.message for record in caplog.records)


# ============================================================
# TESTS - SPEED
# ============================================================

class TestTrailingSpeed:
    """Test the reported -> derived -> cruising fallbacks."""

    def test_reported_speeds_are_averaged(self, estimator):
        now = datetime(2026, 3, 2, 15, 0)
        samples = [_sample(40.5, -75.0, now, speed=20.0), _sample(40.4, -75.0, now, speed=10.0)]
        assert estimator.trailing_speed_mph(samples) == pytest.approx(15.0 * 2.2369363)

    def test_implausible_reported_speed_uses_positions(self, estimator):
        now = datetime(2026, 3, 2, 15, 0)
        samples = [
            _sample(40.1, -75.0, now, speed=100.0),
            _sample(40.0, -75.0, now - timedelta(minutes=10)),
        ]
        # 11.1 km in 10 minutes
        assert estimator.trailing_speed_mph(samples) == pytest.approx(66.7 / 1.609344, rel=0.01)

    def test_cruising_speed_when_nothing_usable(self, estimator):
        now = datetime(2026, 3, 2, 15, 0)
        samples = [_sample(40.1, -75.0, now, speed=0.0)]
        assert estimator.trailing_speed_mph(samples) == 45.0

    def test_only_trailing_samples_count(self):
        estimator = ETAEstimator(ETASettings(trailing_samples=1))
        now = datetime(2026, 3, 2, 15, 0)
        samples = [_sample(40.5, -75.0, now, speed=10.0), _sample(40.4, -75.0, now, speed=30.0)]
        assert estimator.trailing_speed_mph(samples) == pytest.approx(10.0 * 2.2369363)


# ============================================================
# TESTS - PROPERTIES
# ============================================================

class TestProperties:
    """Bounds and monotonicity."""

    def test_confidence_non_increasing_with_age(self, estimator):
        values = [estimator.confidence(age / 2) for age in range(0, 240)]
        assert all(a >= b for a, b in zip(values, values[1:]))
        assert values[0] == 95
        assert values[-1] == 40

    def test_confidence_floor_without_sample(self, estimator):
        assert estimator.confidence(None) == 40

    @pytest.mark.parametrize("lat,lon", [
        (39.0, -75.0),
        (40.0, -75.0),
        (40.5, -74.0),
        (41.0, -75.0),
        (42.5, -75.0),
    ])
    def test_progress_within_bounds(self, estimator, lat, lon):
        now = datetime(2026, 3, 2, 20, 0)
        session = _session(trip_started_at=datetime(2026, 3, 2, 14, 0))
        eta = estimator.estimate(_departure(), session, [_sample(lat, lon, now)], now)
        assert 0 <= eta.progress_percentage <= 100
        assert eta.progress_cross_check is None or 0 <= eta.progress_cross_check <= 100

    def test_time_progress_before_start_is_zero(self, estimator):
        assert estimator.time_progress(_departure(), None, 0, datetime(2026, 3, 2, 15, 0)) == 0
