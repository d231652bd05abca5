"""
Read-only adapter over the booking subsystem's departures.

Converts route/departure/booking rows into the Departure domain model.
This service never writes booking-owned tables.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from config import config
from db import crud as db_crud
from db.models import DepartureModel
from errors import NotFound
from models import BookingContact, Departure, DriverInfo, GeoPoint, RouteInfo


def _local_midnight_utc(day: date) -> datetime:
    local = datetime.combine(day, time.min, tzinfo=config.display_zone())
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def to_departure(row: DepartureModel) -> Departure:
    route = row.route
    waypoint: Optional[GeoPoint] = None
    if route.waypoint_lat is not None and route.waypoint_lon is not None:
        waypoint = GeoPoint(lat=route.waypoint_lat, lon=route.waypoint_lon, name=route.waypoint_name)

    driver: Optional[DriverInfo] = None
    if row.driver_id:
        driver = DriverInfo(id=row.driver_id, name=row.driver_name, phone=row.driver_phone)

    return Departure(
        id=row.id,
        scheduled_at=row.scheduled_at,
        capacity=int(row.capacity or 0),
        driver=driver,
        route=RouteInfo(
            id=route.id,
            name=route.name,
            origin=GeoPoint(lat=route.origin_lat, lon=route.origin_lon, name=route.origin_name),
            destination=GeoPoint(
                lat=route.destination_lat,
                lon=route.destination_lon,
                name=route.destination_name,
            ),
            waypoint=waypoint,
            duration_minutes=int(route.duration_minutes or 0),
        ),
        bookings=[
            BookingContact(
                booking_id=b.id,
                name=b.customer_name,
                phone=b.phone,
                email=b.email,
                pickup_location=b.pickup_location,
                status=b.status or "PAID",
            )
            for b in (row.bookings or [])
        ],
    )


class DepartureCatalog:
    """Departure lookups used by the tracking engine and the reminder scan."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, departure_id: str) -> Departure:
        row = db_crud.get_departure(self.db, departure_id)
        if row is None:
            raise NotFound("departure", departure_id)
        return to_departure(row)

    def find(self, departure_id: str) -> Optional[Departure]:
        row = db_crud.get_departure(self.db, departure_id)
        return to_departure(row) if row is not None else None

    def list_between(self, start: datetime, end: datetime) -> List[Departure]:
        return [to_departure(row) for row in db_crud.list_departures_between(self.db, start, end)]

    def list_for_driver(self, driver_id: str, day: date) -> List[Departure]:
        """Departures on a local calendar day (DISPLAY_TIMEZONE)."""
        start = _local_midnight_utc(day)
        end = _local_midnight_utc(day + timedelta(days=1))
        rows = db_crud.list_departures_for_driver(self.db, driver_id, start, end)
        return [to_departure(row) for row in rows]
