"""
Tests for the passenger live-status view.
"""

from datetime import datetime, timedelta

import pytest

from config import Config
from errors import NotFound
from models import LocationFix, TripStatus
from services.live_status import LiveStatusService
from services.location_store import LocationStore
from services.trip_state_machine import TransitionCommand, TripStateMachine


def _advance(db, clock, *statuses, **kwargs):
    machine = TripStateMachine(db, clock=clock)
    session = None
    for status in statuses:
        session = machine.advance(TransitionCommand(departure_id="DEP-1400", target=status, driver_id="DRV-1", **kwargs))
    return session


class TestLiveStatus:
    def test_scheduled(self, db, seed_departure, clock):
        seed_departure()

        view = LiveStatusService(db, clock=clock).live_status("DEP-1400")

        assert view.status == TripStatus.SCHEDULED
        assert view.status_message == "Scheduled to depart Central Station at 2:00 PM"
        assert view.position is None
        assert view.last_update_at is None
        assert view.eta.source == "schedule"
        assert view.is_delayed is False

    def test_scheduled_message_in_display_timezone(self, db, seed_departure, clock, monkeypatch):
        monkeypatch.setattr(Config, "DISPLAY_TIMEZONE", "America/Chicago")
        seed_departure()

        view = LiveStatusService(db, clock=clock).live_status("DEP-1400")

        assert view.status_message == "Scheduled to depart Central Station at 8:00 AM"
        assert view.scheduled_at == datetime(2026, 3, 2, 14, 0)

    def test_en_route_with_position(self, db, seed_departure, clock):
        seed_departure()
        clock.set(datetime(2026, 3, 2, 14, 5))
        session = _advance(db, clock, TripStatus.BOARDING, TripStatus.EN_ROUTE)

        clock.set(datetime(2026, 3, 2, 15, 10))
        LocationStore(db, clock=clock).append(str(session.id), LocationFix(lat=40.5, lon=-75.0, speed=20.0))
        view = LiveStatusService(db, clock=clock).live_status("DEP-1400")

        assert view.status == TripStatus.EN_ROUTE
        assert view.position.lat == 40.5
        assert view.last_update_at == datetime(2026, 3, 2, 15, 10)
        assert view.eta.source == "gps"
        assert view.eta.progress_percentage == pytest.approx(50, abs=1)
        assert view.status_message.startswith("On the way to Airport Terminal B")

    def test_delayed(self, db, seed_departure, clock):
        seed_departure()
        _advance(db, clock, TripStatus.BOARDING)
        _advance(db, clock, TripStatus.DELAYED, delay_minutes=20, delay_reason="Road closure")

        view = LiveStatusService(db, clock=clock).live_status("DEP-1400")

        assert view.is_delayed is True
        assert view.delay_minutes == 20
        assert view.status_message == "Delayed by 20 min, new arrival around 4:30 PM"

    def test_arrived_reports_actual_time(self, db, seed_departure, clock):
        seed_departure()
        _advance(db, clock, TripStatus.BOARDING, TripStatus.EN_ROUTE)
        clock.set(datetime(2026, 3, 2, 16, 4))
        _advance(db, clock, TripStatus.ARRIVED)

        clock.set(clock.now + timedelta(minutes=20))
        eta = LiveStatusService(db, clock=clock).eta("DEP-1400")

        assert eta.estimated_arrival == datetime(2026, 3, 2, 16, 4)
        assert eta.confidence == 100

    def test_unknown_departure(self, db, clock):
        with pytest.raises(NotFound):
            LiveStatusService(db, clock=clock).live_status("NOPE")
        with pytest.raises(NotFound):
            LiveStatusService(db, clock=clock).eta("NOPE")
