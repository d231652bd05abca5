"""
Driver API.

Endpoints used by the driver app: today's departures, trip status changes and
periodic GPS updates.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from config import config
from db import crud as db_crud
from db import schemas
from db.database import get_db
from errors import InvalidTransition, NotFound, SessionNotTrackable
from models import LocationFix, TRACKABLE_STATUSES
from services.departure_catalog import DepartureCatalog
from services.location_store import LocationStore
from services.reminder_scheduler import eligible_recipients
from services.message_templates import local_today
from services.status_notifier import notify_status_change_task, template_for
from services.trip_state_machine import TransitionCommand, TripStateMachine

router = APIRouter(prefix="/api/driver", tags=["driver"])


@router.get("/departures", response_model=List[schemas.DriverDepartureResponse])
async def list_driver_departures(
    driver_id: str = Query(..., min_length=1, max_length=64),
    day: Optional[date] = Query(default=None, description="YYYY-MM-DD in DISPLAY_TIMEZONE, defaults to today"),
    db: Session = Depends(get_db),
) -> List[schemas.DriverDepartureResponse]:
    """Departures on the day assigned to the driver or not yet assigned."""
    target_day = day or local_today()
    departures = DepartureCatalog(db).list_for_driver(driver_id, target_day)
    sessions = db_crud.get_sessions_by_departures(db, [d.id for d in departures])

    results = []
    for departure in departures:
        session = sessions.get(departure.id)
        results.append(
            schemas.DriverDepartureResponse(
                departure_id=departure.id,
                route_name=departure.route.name,
                origin=departure.route.origin.name or "",
                destination=departure.route.destination.name or "",
                scheduled_at=departure.scheduled_at,
                capacity=departure.capacity,
                booked_passengers=len(departure.confirmed_bookings),
                driver_id=departure.driver.id if departure.driver else None,
                session_id=str(session.id) if session else None,
                status=session.status if session else "SCHEDULED",
                passenger_count=int(session.passenger_count or 0) if session else 0,
            )
        )
    return results


@router.post("/trips/{departure_id}/status", response_model=schemas.TransitionResponse)
async def update_trip_status(
    departure_id: str,
    payload: schemas.TransitionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> schemas.TransitionResponse:
    """Advance the trip of a departure; optionally records the GPS fix sent with it."""
    try:
        departure = DepartureCatalog(db).get(departure_id)
        session = TripStateMachine(db).advance(
            TransitionCommand(
                departure_id=departure_id,
                target=payload.status,
                driver_id=payload.driver_id,
                passenger_count=payload.passenger_count,
                delay_minutes=payload.delay_minutes,
                delay_reason=payload.delay_reason,
                notes=payload.notes,
                location=payload.location.model_dump(mode="json") if payload.location else None,
            )
        )
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransition as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(exc),
                "current": exc.current,
                "requested": exc.requested,
            },
        ) from exc

    response = schemas.TransitionResponse(session=schemas.TrackingSessionResponse.model_validate(session))

    if payload.location is not None and payload.status in TRACKABLE_STATUSES:
        try:
            LocationStore(db).append(str(session.id), payload.location)
            response.location_recorded = True
        except SessionNotTrackable:
            # another writer moved the trip on after this transition
            response.location_recorded = False

    if config.NOTIFY_ON_STATUS_CHANGE and template_for(payload.status) is not None:
        recipients = eligible_recipients(departure)
        if recipients:
            background_tasks.add_task(notify_status_change_task, departure_id, payload.status, payload.driver_id)
            response.notifications_queued = len(recipients)

    return response


@router.post(
    "/sessions/{session_id}/locations",
    response_model=schemas.LocationSampleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_location(
    session_id: str,
    fix: LocationFix,
    db: Session = Depends(get_db),
) -> schemas.LocationSampleResponse:
    """Periodic GPS update from the driver app."""
    try:
        sample = LocationStore(db).append(session_id, fix)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SessionNotTrackable as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "status": exc.status},
        ) from exc
    return schemas.LocationSampleResponse.model_validate(sample)
