"""
Passenger SMS on driver status changes (BOARDING, EN_ROUTE, DELAYED, ARRIVED).

Runs after the transition has committed, with its own database session, so a
slow or failing gateway never affects the driver's request.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from db import crud as db_crud
from db import database
from errors import GatewayUnavailable
from models import TripStatus
from services import message_templates
from services.departure_catalog import DepartureCatalog
from services.eta_estimator import ETAEstimator
from services.notification_dispatcher import DispatchResult, NotificationDispatcher
from services.reminder_scheduler import eligible_recipients

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def template_for(status: TripStatus) -> Optional[str]:
    return message_templates.STATUS_TEMPLATES.get(status.value)


async def notify_status_change(
    db: Session,
    departure_id: str,
    status: TripStatus,
    actor: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    clock: Callable[[], datetime] = _utc_now,
) -> Optional[DispatchResult]:
    """
    Send the status template to the departure's confirmed passengers.

    Returns None when the status has no template or nobody can be reached.
    Gateway outages are logged; the outcome stays recorded per attempt.
    """
    template = template_for(status)
    if template is None:
        return None

    departure = DepartureCatalog(db).get(departure_id)
    recipients = eligible_recipients(departure)
    if not recipients:
        return None

    session = db_crud.get_session_by_departure(db, departure_id)
    context = {}
    if session is not None:
        if status == TripStatus.DELAYED:
            context["delay_minutes"] = int(session.delay_minutes or 0)
            context["reason"] = session.delay_reason
        if status == TripStatus.EN_ROUTE:
            samples = db_crud.get_latest_samples(db, str(session.id))
            context["eta"] = ETAEstimator().estimate(departure, session, samples, clock()).estimated_arrival

    messages = [
        (booking.phone, message_templates.render(template, departure, **context))
        for booking in recipients
    ]
    dispatcher = dispatcher or NotificationDispatcher(db)
    try:
        return await dispatcher.dispatch(
            messages,
            batch_kind="status_change",
            departure_id=departure_id,
            triggered_by=actor,
        )
    except GatewayUnavailable as exc:
        logger.error(
            f"[SMS] Status notification {template} for {departure_id} not delivered: {exc.reason}"
        )
        return None


async def notify_status_change_task(departure_id: str, status: TripStatus, actor: Optional[str] = None) -> None:
    """Background-task entry point with its own session."""
    if database.SessionLocal is None:
        logger.warning("[SMS] Database unavailable, status notification skipped")
        return
    db = database.SessionLocal()
    try:
        await notify_status_change(db, departure_id, status, actor=actor)
    except Exception as exc:
        logger.error(f"[SMS] Status notification for {departure_id} failed: {exc}")
    finally:
        db.close()
