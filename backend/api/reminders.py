"""
Reminders / notifications operations API.

Window status for the operations view, manual triggers and the
notification history of a departure.
"""

from __future__ import annotations

from typing import List, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from config import config
from db import crud as db_crud
from db import schemas
from db.database import get_db
from errors import GatewayUnavailable, NotFound
from services.reminder_scheduler import ReminderScheduler, reminder_loop

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


def _scheduler_running() -> bool:
    return reminder_loop.running or config.CELERY_ENABLED


@router.get("/status", response_model=schemas.ReminderStatusResponse)
async def reminder_status(db: Session = Depends(get_db)) -> schemas.ReminderStatusResponse:
    """Departures currently in the reminder window and what was sent for them."""
    return ReminderScheduler(db).status(scheduler_running=_scheduler_running())


@router.post(
    "/trigger",
    response_model=Union[schemas.ReminderRunResponse, schemas.ManualSendResponse],
)
async def trigger_reminders(
    payload: schemas.ReminderTriggerRequest,
    db: Session = Depends(get_db),
) -> Union[schemas.ReminderRunResponse, schemas.ManualSendResponse]:
    """Run the window scan now, or send to a departure and/or explicit numbers."""
    try:
        return await ReminderScheduler(db).trigger(payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except GatewayUnavailable as exc:
        raise HTTPException(
            status_code=503,
            detail={"message": str(exc), "sent": exc.sent, "failed": exc.failed},
        ) from exc


@router.get(
    "/departures/{departure_id}/notifications",
    response_model=List[schemas.NotificationAttemptResponse],
)
async def departure_notifications(
    departure_id: str,
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
) -> List[schemas.NotificationAttemptResponse]:
    attempts = db_crud.list_attempts(db, departure_id=departure_id, limit=limit)
    return [schemas.NotificationAttemptResponse.model_validate(a) for a in attempts]
