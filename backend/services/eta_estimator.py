"""
ETA estimation for tracked departures.

Blends a schedule-based baseline (scheduled departure + scheduled duration +
accumulated delay) with a GPS-based estimate (straight-line remaining distance
over trailing average speed) when a fresh sample exists. Confidence is driven
by sample freshness; missing or stale GPS degrades to a schedule-only estimate
instead of failing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from config import config
from models import Departure, ETAEstimate, FINISHED_STATUSES, GeoPoint, RouteInfo, TripStatus

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
KM_PER_MILE = 1.609344
MPS_TO_MPH = 2.2369363


@dataclass
class ETASettings:
    freshness_minutes: float = config.ETA_FRESHNESS_MINUTES
    confidence_ceiling: int = config.ETA_CONFIDENCE_CEILING
    confidence_floor: int = config.ETA_CONFIDENCE_FLOOR
    confidence_decay_per_minute: float = config.ETA_CONFIDENCE_DECAY_PER_MINUTE
    cruising_speed_mph: float = config.ETA_CRUISING_SPEED_MPH
    max_plausible_speed_mph: float = config.ETA_MAX_PLAUSIBLE_SPEED_MPH
    trailing_samples: int = config.ETA_TRAILING_SAMPLES
    min_gps_weight: float = config.ETA_MIN_GPS_WEIGHT
    max_gps_weight: float = config.ETA_MAX_GPS_WEIGHT
    progress_method: str = config.ETA_PROGRESS_METHOD
    progress_tolerance: float = config.ETA_PROGRESS_TOLERANCE


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distancia Haversine en km."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def _distance(a: GeoPoint, lat: float, lon: float) -> float:
    return haversine_km(a.lat, a.lon, lat, lon)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _passed_waypoint(route: RouteInfo, lat: float, lon: float) -> bool:
    if route.waypoint is None:
        return True
    waypoint_from_origin = _distance(route.origin, route.waypoint.lat, route.waypoint.lon)
    return _distance(route.origin, lat, lon) >= waypoint_from_origin


def remaining_route_km(route: RouteInfo, lat: float, lon: float) -> float:
    """Straight-line distance to the destination, through the waypoint if not yet passed."""
    if not _passed_waypoint(route, lat, lon):
        wp = route.waypoint
        return _distance(wp, lat, lon) + _distance(route.destination, wp.lat, wp.lon)
    return _distance(route.destination, lat, lon)


def traveled_route_km(route: RouteInfo, lat: float, lon: float) -> float:
    if route.waypoint is not None and _passed_waypoint(route, lat, lon):
        wp = route.waypoint
        return _distance(route.origin, wp.lat, wp.lon) + _distance(wp, lat, lon)
    return _distance(route.origin, lat, lon)


class ETAEstimator:
    """Stateless estimator; callers supply the session, samples and clock."""

    def __init__(self, settings: Optional[ETASettings] = None) -> None:
        self.settings = settings or ETASettings()

    # ------------------------------------------------------------------
    # Speed
    # ------------------------------------------------------------------

    def _plausible(self, mph: Optional[float]) -> bool:
        return mph is not None and 0 < mph <= self.settings.max_plausible_speed_mph

    def trailing_speed_mph(self, samples: Sequence[Any]) -> float:
        """
        Average speed over the newest samples.

        Reported speeds are preferred; otherwise speed is derived from
        consecutive positions; otherwise the route cruising speed is used.
        """
        recent = list(samples[: self.settings.trailing_samples])

        reported = [s.speed * MPS_TO_MPH for s in recent if s.speed is not None]
        reported = [mph for mph in reported if self._plausible(mph)]
        if reported:
            return sum(reported) / len(reported)

        derived = []
        for newer, older in zip(recent, recent[1:]):
            hours = (newer.captured_at - older.captured_at).total_seconds() / 3600
            if hours <= 0:
                continue
            mph = haversine_km(older.lat, older.lon, newer.lat, newer.lon) / KM_PER_MILE / hours
            if self._plausible(mph):
                derived.append(mph)
        if derived:
            return sum(derived) / len(derived)

        return self.settings.cruising_speed_mph

    # ------------------------------------------------------------------
    # Confidence and progress
    # ------------------------------------------------------------------

    def confidence(self, sample_age_minutes: Optional[float]) -> int:
        s = self.settings
        if sample_age_minutes is None:
            return s.confidence_floor
        if sample_age_minutes <= s.freshness_minutes:
            return s.confidence_ceiling
        decayed = s.confidence_ceiling - s.confidence_decay_per_minute * (sample_age_minutes - s.freshness_minutes)
        return int(round(max(s.confidence_floor, decayed)))

    def time_progress(
        self,
        departure: Departure,
        trip_started_at: Optional[datetime],
        delay_minutes: int,
        now: datetime,
    ) -> float:
        if trip_started_at is None:
            return 0.0
        elapsed = (now - trip_started_at).total_seconds() / 60
        total = departure.route.duration_minutes + max(0, delay_minutes)
        if total <= 0:
            return 100.0 if elapsed > 0 else 0.0
        return round(_clamp(elapsed / total * 100, 0.0, 100.0), 1)

    @staticmethod
    def distance_progress(route: RouteInfo, lat: float, lon: float) -> float:
        traveled = traveled_route_km(route, lat, lon)
        remaining = remaining_route_km(route, lat, lon)
        if traveled + remaining <= 0:
            return 0.0
        return round(_clamp(traveled / (traveled + remaining) * 100, 0.0, 100.0), 1)

    # ------------------------------------------------------------------
    # Estimate
    # ------------------------------------------------------------------

    def estimate(
        self,
        departure: Departure,
        session: Optional[Any],
        samples: Sequence[Any],
        now: datetime,
    ) -> ETAEstimate:
        """
        Estimate arrival for a departure.

        Args:
            departure: Departure with route and schedule
            session: Tracking session row, or None while still SCHEDULED
            samples: Latest location samples, newest first
            now: Current naive-UTC time
        """
        s = self.settings
        status = TripStatus(session.status) if session is not None else TripStatus.SCHEDULED

        if status in FINISHED_STATUSES:
            arrived = session.arrived_at or session.completed_at or now
            return ETAEstimate(
                estimated_arrival=arrived,
                minutes_remaining=0,
                confidence=100,
                progress_percentage=100.0,
                source="actual",
                progress_method="actual",
            )

        delay_minutes = int(session.delay_minutes or 0) if session is not None else 0
        trip_started_at = session.trip_started_at if session is not None else None
        baseline = departure.scheduled_at + timedelta(
            minutes=departure.route.duration_minutes + delay_minutes
        )

        latest = samples[0] if samples else None
        sample_age: Optional[float] = None
        if latest is not None:
            sample_age = max(0.0, (now - latest.captured_at).total_seconds() / 60)

        arrival = baseline
        source = "schedule"
        remaining_km: Optional[float] = None
        distance_pct: Optional[float] = None

        if latest is not None and sample_age <= s.freshness_minutes:
            remaining_km = remaining_route_km(departure.route, latest.lat, latest.lon)
            speed_kmh = self.trailing_speed_mph(samples) * KM_PER_MILE
            gps_arrival = now + timedelta(minutes=remaining_km / speed_kmh * 60)

            freshness = 1 - (sample_age / s.freshness_minutes if s.freshness_minutes > 0 else 1)
            weight = s.min_gps_weight + (s.max_gps_weight - s.min_gps_weight) * freshness
            arrival = baseline + (gps_arrival - baseline) * weight
            source = "gps"
            distance_pct = self.distance_progress(departure.route, latest.lat, latest.lon)

        time_pct = self.time_progress(departure, trip_started_at, delay_minutes, now)

        if s.progress_method == "distance" and distance_pct is not None:
            progress, method, cross_check = distance_pct, "distance", time_pct
        else:
            progress, method, cross_check = time_pct, "time", distance_pct

        if cross_check is not None and abs(progress - cross_check) > s.progress_tolerance:
            logger.warning(
                f"[ETA] Departure {departure.id}: {method} progress {progress:.1f}% "
                f"disagrees with cross-check {cross_check:.1f}%"
            )

        minutes_remaining = max(0, math.ceil((arrival - now).total_seconds() / 60))

        return ETAEstimate(
            estimated_arrival=arrival.replace(microsecond=0),
            minutes_remaining=minutes_remaining,
            confidence=self.confidence(sample_age),
            progress_percentage=progress,
            source=source,
            remaining_distance_km=round(remaining_km, 2) if remaining_km is not None else None,
            progress_method=method,
            progress_cross_check=cross_check,
            sample_age_minutes=round(sample_age, 1) if sample_age is not None else None,
        )
