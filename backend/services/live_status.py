"""
Passenger-facing live status of a departure.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from config import config
from db import crud as db_crud
from db.schemas import DriverContact, LivePosition, LiveStatusResponse
from models import Departure, ETAEstimate, TripStatus
from services.departure_catalog import DepartureCatalog
from services.eta_estimator import ETAEstimator
from services.message_templates import format_clock, tracking_url


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def status_message(status: TripStatus, departure: Departure, eta: ETAEstimate, delay_minutes: int = 0) -> str:
    route = departure.route
    if status == TripStatus.SCHEDULED:
        return f"Scheduled to depart {route.origin.name} at {format_clock(departure.scheduled_at)}"
    if status == TripStatus.BOARDING:
        return f"Boarding at {route.origin.name}"
    if status == TripStatus.EN_ROUTE:
        return f"On the way to {route.destination.name}, arriving in about {eta.minutes_remaining} min"
    if status == TripStatus.DELAYED:
        return f"Delayed by {delay_minutes} min, new arrival around {format_clock(eta.estimated_arrival)}"
    if status == TripStatus.ARRIVED:
        return f"Arrived at {route.destination.name}"
    return "Trip completed"


class LiveStatusService:
    def __init__(
        self,
        db: Session,
        estimator: Optional[ETAEstimator] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.db = db
        self.catalog = DepartureCatalog(db)
        self.estimator = estimator or ETAEstimator()
        self.clock = clock

    def eta(self, departure_id: str) -> ETAEstimate:
        """Raises NotFound for an unknown departure; never fails on missing GPS."""
        departure = self.catalog.get(departure_id)
        session = db_crud.get_session_by_departure(self.db, departure_id)
        samples = self._samples(session)
        return self.estimator.estimate(departure, session, samples, self.clock())

    def live_status(self, departure_id: str) -> LiveStatusResponse:
        departure = self.catalog.get(departure_id)
        session = db_crud.get_session_by_departure(self.db, departure_id)
        samples = self._samples(session)
        eta = self.estimator.estimate(departure, session, samples, self.clock())

        status = TripStatus(session.status) if session else TripStatus.SCHEDULED
        delay_minutes = int(session.delay_minutes or 0) if session else 0
        latest = samples[0] if samples else None

        position = None
        if latest is not None:
            position = LivePosition(
                lat=latest.lat,
                lon=latest.lon,
                speed=latest.speed,
                heading=latest.heading,
                captured_at=latest.captured_at,
            )

        last_update = None
        if session is not None:
            last_update = session.last_status_change_at
            if latest is not None and latest.captured_at > last_update:
                last_update = latest.captured_at

        driver = None
        if departure.driver is not None:
            driver = DriverContact(name=departure.driver.name, phone=departure.driver.phone)

        return LiveStatusResponse(
            departure_id=departure.id,
            route_name=departure.route.name,
            origin=departure.route.origin.name or "",
            destination=departure.route.destination.name or "",
            scheduled_at=departure.scheduled_at,
            status=status,
            status_message=status_message(status, departure, eta, delay_minutes),
            delay_minutes=delay_minutes,
            is_delayed=bool(session.delay_active) if session else False,
            passenger_count=int(session.passenger_count or 0) if session else 0,
            eta=eta,
            last_update_at=last_update,
            position=position,
            driver=driver,
            tracking_url=tracking_url(departure.id),
        )

    def _samples(self, session):
        if session is None:
            return []
        return db_crud.get_latest_samples(self.db, str(session.id), limit=config.ETA_TRAILING_SAMPLES)
