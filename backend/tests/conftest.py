"""
Pytest configuration and shared fixtures for shuttle tracking backend tests.
"""
import os
import sys
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pytest

# Tests wire their own in-memory databases; keep the app from connecting or scheduling
os.environ.setdefault("USE_DATABASE", "false")
os.environ.setdefault("REMINDER_LOOP_ENABLED", "false")
os.environ.setdefault("CELERY_ENABLED", "false")
os.environ.setdefault("SMS_GATEWAY", "log")

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import models
from services.sms_gateway import SmsGateway


# ============================================================
# CLOCK
# ============================================================

# Monday 2026-03-02, naive UTC like every stored timestamp
DAY = datetime(2026, 3, 2)
DEPARTURE_AT = datetime(2026, 3, 2, 14, 0)


class FakeClock:
    """Settable clock for services that take a ``clock`` callable."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 13, 25))


# ============================================================
# DATABASE
# ============================================================

@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ============================================================
# BOOKING-SIDE DATA
# ============================================================

# Straight north-south route, ~111 km; midpoint at lat 40.5
ORIGIN = (40.0, -75.0)
DESTINATION = (41.0, -75.0)
MIDPOINT = (40.5, -75.0)


@pytest.fixture
def seed_departure(db):
    """Factory inserting a route, a departure and its bookings."""

    def _seed(
        departure_id: str = "DEP-1400",
        scheduled_at: datetime = DEPARTURE_AT,
        duration_minutes: int = 130,
        phones: Sequence[Optional[str]] = ("555-201-0001", "555-201-0002", "555-201-0003"),
        booking_status: str = "PAID",
        extra_bookings: Optional[List[Dict]] = None,
        driver_id: Optional[str] = "DRV-1",
        waypoint: Optional[tuple] = None,
        status: str = "SCHEDULED",
    ) -> models.DepartureModel:
        route_id = f"RT-{departure_id}"
        db.add(models.RouteModel(
            id=route_id,
            name="Downtown Express",
            origin_name="Central Station",
            origin_lat=ORIGIN[0],
            origin_lon=ORIGIN[1],
            destination_name="Airport Terminal B",
            destination_lat=DESTINATION[0],
            destination_lon=DESTINATION[1],
            waypoint_name="Midtown" if waypoint else None,
            waypoint_lat=waypoint[0] if waypoint else None,
            waypoint_lon=waypoint[1] if waypoint else None,
            duration_minutes=duration_minutes,
        ))
        departure = models.DepartureModel(
            id=departure_id,
            route_id=route_id,
            scheduled_at=scheduled_at,
            capacity=14,
            status=status,
            driver_id=driver_id,
            driver_name="Sam Rivera" if driver_id else None,
            driver_phone="555-300-0000" if driver_id else None,
        )
        db.add(departure)
        for index, phone in enumerate(phones):
            db.add(models.BookingModel(
                id=f"{departure_id}-B{index}",
                departure_id=departure_id,
                status=booking_status,
                customer_name=f"Passenger {index}",
                phone=phone,
                email=f"p{index}@example.com",
                pickup_location="Central Station, Gate 3",
            ))
        for index, booking in enumerate(extra_bookings or []):
            db.add(models.BookingModel(
                id=f"{departure_id}-X{index}",
                departure_id=departure_id,
                **booking,
            ))
        db.commit()
        return departure

    return _seed


# ============================================================
# SMS GATEWAY
# ============================================================

class FakeSmsGateway(SmsGateway):
    """
    Scripted gateway. ``script`` maps a normalized number to the outcomes of
    successive calls: an exception instance is raised, anything else succeeds.
    """

    name = "fake"

    def __init__(self, script: Optional[Dict[str, list]] = None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls: List[tuple] = []

    async def send(self, to: str, body: str) -> str:
        self.calls.append((to, body))
        outcomes = self.script.get(to)
        if outcomes:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
        return f"SM{len(self.calls):04d}"


@pytest.fixture
def fake_gateway() -> FakeSmsGateway:
    return FakeSmsGateway()


@pytest.fixture
def gateway_factory():
    return FakeSmsGateway
