"""
Trip state machine.

Owns the lifecycle of the tracking session of each departure:

    SCHEDULED -> BOARDING -> EN_ROUTE -> [DELAYED]* -> ARRIVED -> COMPLETED

It is the only writer of TrackingSession.status. Every transition is a
compare-and-set against the stored version, so two concurrent requests from
the same prior state cannot both succeed; sessions of different departures
never contend with each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from db import crud as db_crud
from db.models import TrackingSessionModel
from errors import InvalidTransition, NotFound
from models import TripStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[TripStatus, set] = {
    TripStatus.SCHEDULED: {TripStatus.BOARDING},
    TripStatus.BOARDING: {TripStatus.EN_ROUTE, TripStatus.DELAYED},
    TripStatus.EN_ROUTE: {TripStatus.DELAYED, TripStatus.ARRIVED},
    TripStatus.DELAYED: {TripStatus.EN_ROUTE},
    TripStatus.ARRIVED: {TripStatus.COMPLETED},
    TripStatus.COMPLETED: set(),
}

EVENT_TYPES = {
    TripStatus.BOARDING: "STATUS_CHANGE",
    TripStatus.EN_ROUTE: "TRIP_STARTED",
    TripStatus.DELAYED: "DELAY_REPORTED",
    TripStatus.ARRIVED: "STATUS_CHANGE",
    TripStatus.COMPLETED: "TRIP_COMPLETED",
}

DEFAULT_DELAY_MINUTES = 15


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def can_transition(current: TripStatus, target: TripStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


@dataclass
class TransitionCommand:
    departure_id: str
    target: TripStatus
    driver_id: str
    passenger_count: Optional[int] = None
    delay_minutes: Optional[int] = None
    delay_reason: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[Dict[str, Any]] = None


class TripStateMachine:
    """Validates and applies driver status changes for a departure."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = _utc_now) -> None:
        self.db = db
        self.clock = clock

    def current_status(self, departure_id: str) -> TripStatus:
        session = db_crud.get_session_by_departure(self.db, departure_id)
        return TripStatus(session.status) if session else TripStatus.SCHEDULED

    def get_session(self, session_id: str) -> TrackingSessionModel:
        session = db_crud.get_session(self.db, session_id)
        if session is None:
            raise NotFound("tracking session", session_id)
        return session

    def advance(self, command: TransitionCommand) -> TrackingSessionModel:
        """
        Apply one driver transition.

        Raises:
            NotFound: departure does not exist
            InvalidTransition: target not reachable from the stored status, or
                another writer changed the session first
        """
        now = self.clock()
        session = db_crud.get_session_by_departure(self.db, command.departure_id)

        if session is None:
            if db_crud.get_departure(self.db, command.departure_id) is None:
                raise NotFound("departure", command.departure_id)
            return self._start_session(command, now)

        current = TripStatus(session.status)
        if not can_transition(current, command.target):
            raise InvalidTransition(current.value, command.target.value)

        values = self._transition_values(session, command, now)
        event = self._event(current, command)
        event["created_at"] = now
        updated = db_crud.transition_session(
            self.db,
            session_id=str(session.id),
            expected_version=int(session.version),
            expected_status=current.value,
            values=values,
            event=event,
        )
        if updated is None:
            stored = db_crud.get_session(self.db, str(session.id))
            stored_status = stored.status if stored else current.value
            logger.info(
                f"[Trip] Concurrent update on departure {command.departure_id}: "
                f"{current.value} -> {command.target.value} lost to {stored_status}"
            )
            raise InvalidTransition(stored_status, command.target.value, "session changed concurrently")

        logger.info(
            f"[Trip] {command.departure_id}: {current.value} -> {command.target.value} by {command.driver_id}"
        )
        return updated

    def _start_session(self, command: TransitionCommand, now: datetime) -> TrackingSessionModel:
        if command.target != TripStatus.BOARDING:
            raise InvalidTransition(TripStatus.SCHEDULED.value, command.target.value)

        values = {
            "status": TripStatus.BOARDING.value,
            "version": 1,
            "passenger_count": command.passenger_count or 0,
            "last_status_change_at": now,
            "last_status_change_by": command.driver_id,
            "created_at": now,
        }
        event = self._event(TripStatus.SCHEDULED, command)
        event["created_at"] = now
        created = db_crud.create_session(self.db, command.departure_id, values, event)
        if created is None:
            stored = db_crud.get_session_by_departure(self.db, command.departure_id)
            stored_status = stored.status if stored else TripStatus.SCHEDULED.value
            raise InvalidTransition(stored_status, command.target.value, "session changed concurrently")

        logger.info(f"[Trip] {command.departure_id}: SCHEDULED -> BOARDING by {command.driver_id}")
        return created

    def _transition_values(
        self,
        session: TrackingSessionModel,
        command: TransitionCommand,
        now: datetime,
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {
            "status": command.target.value,
            "last_status_change_at": now,
            "last_status_change_by": command.driver_id,
        }
        if command.passenger_count is not None:
            values["passenger_count"] = command.passenger_count

        if command.target == TripStatus.EN_ROUTE:
            if session.trip_started_at is None:
                values["trip_started_at"] = now
            values["delay_active"] = False
        elif command.target == TripStatus.DELAYED:
            added = command.delay_minutes if command.delay_minutes is not None else DEFAULT_DELAY_MINUTES
            values["delay_minutes"] = int(session.delay_minutes or 0) + int(added)
            values["delay_active"] = True
            if command.delay_reason:
                values["delay_reason"] = command.delay_reason
        elif command.target == TripStatus.ARRIVED:
            values["arrived_at"] = now
        elif command.target == TripStatus.COMPLETED:
            values["completed_at"] = now
        return values

    def _event(self, current: TripStatus, command: TransitionCommand) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if command.passenger_count is not None:
            payload["passenger_count"] = command.passenger_count
        if command.delay_minutes is not None:
            payload["delay_minutes"] = command.delay_minutes
        if command.delay_reason:
            payload["delay_reason"] = command.delay_reason
        if command.notes:
            payload["notes"] = command.notes
        if command.location:
            payload["location"] = command.location
        return {
            "event_type": EVENT_TYPES.get(command.target, "STATUS_CHANGE"),
            "from_status": current.value,
            "to_status": command.target.value,
            "actor": command.driver_id,
            "payload": payload,
        }
