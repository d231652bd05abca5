"""
CRUD operations for the shuttle tracking database.

Provides functions to read and write:
- Departures, routes and bookings (read-only, owned by booking subsystem)
- Tracking sessions (compare-and-set transitions) and trip events
- Location samples (append-only)
- Reminder records (conditional insert) and notification attempts
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from . import models

logger = logging.getLogger(__name__)


# =============================================================================
# Departure CRUD (read-only)
# =============================================================================

def get_departure(db: Session, departure_id: str) -> Optional[models.DepartureModel]:
    """
    Get a departure by ID with its route and bookings.

    Args:
        db: Database session
        departure_id: Departure ID

    Returns:
        DepartureModel instance or None
    """
    return db.query(models.DepartureModel).options(
        joinedload(models.DepartureModel.route),
        joinedload(models.DepartureModel.bookings),
    ).filter(models.DepartureModel.id == departure_id).first()


def list_departures_between(
    db: Session,
    start: datetime,
    end: datetime,
    include_cancelled: bool = False,
) -> List[models.DepartureModel]:
    """
    Get departures whose scheduled time falls within [start, end].

    Args:
        db: Database session
        start: Lower bound (inclusive)
        end: Upper bound (inclusive)
        include_cancelled: Include departures the booking side cancelled

    Returns:
        List of DepartureModel ordered by scheduled time
    """
    query = db.query(models.DepartureModel).options(
        joinedload(models.DepartureModel.route),
        joinedload(models.DepartureModel.bookings),
    ).filter(
        models.DepartureModel.scheduled_at >= start,
        models.DepartureModel.scheduled_at <= end,
    )
    if not include_cancelled:
        query = query.filter(models.DepartureModel.status != "CANCELLED")
    return query.order_by(models.DepartureModel.scheduled_at).all()


def list_departures_for_driver(
    db: Session,
    driver_id: str,
    start: datetime,
    end: datetime,
) -> List[models.DepartureModel]:
    """Departures in [start, end) assigned to the driver or not yet assigned."""
    return db.query(models.DepartureModel).options(
        joinedload(models.DepartureModel.route),
        joinedload(models.DepartureModel.bookings),
    ).filter(
        models.DepartureModel.scheduled_at >= start,
        models.DepartureModel.scheduled_at < end,
        models.DepartureModel.status != "CANCELLED",
        (models.DepartureModel.driver_id == driver_id) | (models.DepartureModel.driver_id.is_(None)),
    ).order_by(models.DepartureModel.scheduled_at).all()


# =============================================================================
# Tracking Session CRUD
# =============================================================================

def _is_uuid(value: Any) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def get_session(db: Session, session_id: str) -> Optional[models.TrackingSessionModel]:
    if not _is_uuid(session_id):
        return None
    return db.query(models.TrackingSessionModel).filter(
        models.TrackingSessionModel.id == str(session_id)
    ).first()


def get_session_for_update(db: Session, session_id: str) -> Optional[models.TrackingSessionModel]:
    """Fetch a session holding its row lock until the transaction ends (no-op on SQLite)."""
    if not _is_uuid(session_id):
        return None
    return db.query(models.TrackingSessionModel).filter(
        models.TrackingSessionModel.id == str(session_id)
    ).with_for_update().first()


def get_session_by_departure(db: Session, departure_id: str) -> Optional[models.TrackingSessionModel]:
    return db.query(models.TrackingSessionModel).filter(
        models.TrackingSessionModel.departure_id == departure_id
    ).first()


def get_sessions_by_departures(
    db: Session,
    departure_ids: Iterable[str],
) -> Dict[str, models.TrackingSessionModel]:
    ids = list(departure_ids)
    if not ids:
        return {}
    rows = db.query(models.TrackingSessionModel).filter(
        models.TrackingSessionModel.departure_id.in_(ids)
    ).all()
    return {row.departure_id: row for row in rows}


def create_session(
    db: Session,
    departure_id: str,
    values: Dict[str, Any],
    event: Dict[str, Any],
) -> Optional[models.TrackingSessionModel]:
    """
    Create the tracking session for a departure together with its first event.

    Returns:
        Created session, or None when another writer created it first
    """
    db_session = models.TrackingSessionModel(departure_id=departure_id, **values)
    db_session.events.append(models.TripEventModel(**event))
    db.add(db_session)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Tracking session for departure {departure_id} already created by another writer")
        return None
    db.refresh(db_session)
    logger.info(f"Created tracking session {db_session.id} for departure {departure_id}")
    return db_session


def transition_session(
    db: Session,
    session_id: str,
    expected_version: int,
    expected_status: str,
    values: Dict[str, Any],
    event: Dict[str, Any],
) -> Optional[models.TrackingSessionModel]:
    """
    Compare-and-set update of a session plus its audit event, in one commit.

    The update applies only if the stored version and status still match.

    Returns:
        Updated session, or None if the row changed underneath the caller
    """
    updated = db.query(models.TrackingSessionModel).filter(
        models.TrackingSessionModel.id == str(session_id),
        models.TrackingSessionModel.version == expected_version,
        models.TrackingSessionModel.status == expected_status,
    ).update(
        {**values, "version": expected_version + 1},
        synchronize_session=False,
    )
    if updated != 1:
        db.rollback()
        return None

    db.add(models.TripEventModel(session_id=str(session_id), **event))
    db.commit()
    db_session = get_session(db, session_id)
    if db_session is not None:
        db.refresh(db_session)
    return db_session


def list_trip_events(db: Session, session_id: str) -> List[models.TripEventModel]:
    return db.query(models.TripEventModel).filter(
        models.TripEventModel.session_id == str(session_id)
    ).order_by(models.TripEventModel.created_at).all()


# =============================================================================
# Location Sample CRUD
# =============================================================================

def add_location_sample(
    db: Session,
    session_id: str,
    lat: float,
    lon: float,
    captured_at: datetime,
    speed: Optional[float] = None,
    heading: Optional[float] = None,
    accuracy: Optional[float] = None,
) -> models.LocationSampleModel:
    """Append a GPS sample. The caller owns the surrounding transaction."""
    sample = models.LocationSampleModel(
        session_id=str(session_id),
        lat=lat,
        lon=lon,
        speed=speed,
        heading=heading,
        accuracy=accuracy,
        captured_at=captured_at,
    )
    db.add(sample)
    return sample


def get_latest_samples(
    db: Session,
    session_id: str,
    limit: int = 5,
) -> List[models.LocationSampleModel]:
    """Most recent samples for a session, newest first."""
    return db.query(models.LocationSampleModel).filter(
        models.LocationSampleModel.session_id == str(session_id)
    ).order_by(models.LocationSampleModel.captured_at.desc()).limit(limit).all()


def count_samples(db: Session, session_id: str) -> int:
    return db.query(func.count(models.LocationSampleModel.id)).filter(
        models.LocationSampleModel.session_id == str(session_id)
    ).scalar() or 0


# =============================================================================
# Reminder Record CRUD
# =============================================================================

def get_reminder_record(db: Session, departure_id: str) -> Optional[models.ReminderRecordModel]:
    return db.query(models.ReminderRecordModel).filter(
        models.ReminderRecordModel.departure_id == departure_id
    ).first()


def get_reminder_records(
    db: Session,
    departure_ids: Iterable[str],
) -> Dict[str, models.ReminderRecordModel]:
    ids = list(departure_ids)
    if not ids:
        return {}
    rows = db.query(models.ReminderRecordModel).filter(
        models.ReminderRecordModel.departure_id.in_(ids)
    ).all()
    return {row.departure_id: row for row in rows}


def insert_reminder_record_if_absent(
    db: Session,
    departure_id: str,
    recipient_count: int,
    sent_at: datetime,
) -> Optional[models.ReminderRecordModel]:
    """
    Claim a departure for its automatic reminder with a single conditional insert.

    Uses INSERT ... ON CONFLICT DO NOTHING on PostgreSQL and SQLite so that two
    scheduler processes evaluating the same departure cannot both win.

    Returns:
        The new record, or None if a record already existed
    """
    record_id = str(uuid4())
    values = {
        "id": record_id,
        "departure_id": departure_id,
        "kind": "automatic",
        "status": "dispatching",
        "recipient_count": recipient_count,
        "sent_count": 0,
        "failed_count": 0,
        "sent_at": sent_at,
    }
    table = models.ReminderRecordModel.__table__
    dialect = db.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=["departure_id"])
        db.execute(stmt)
        db.commit()
    else:
        try:
            db.execute(table.insert().values(**values))
            db.commit()
        except IntegrityError:
            db.rollback()
            return None

    record = get_reminder_record(db, departure_id)
    if record is None or str(record.id) != record_id:
        return None
    return record


def finish_reminder_record(
    db: Session,
    record_id: str,
    status: str,
    sent_count: int,
    failed_count: int,
    error_message: Optional[str] = None,
) -> Optional[models.ReminderRecordModel]:
    record = db.query(models.ReminderRecordModel).filter(
        models.ReminderRecordModel.id == str(record_id)
    ).first()
    if record is None:
        return None
    record.status = status
    record.sent_count = sent_count
    record.failed_count = failed_count
    record.error_message = error_message
    db.commit()
    db.refresh(record)
    return record


# =============================================================================
# Notification Attempt CRUD
# =============================================================================

def create_attempts(
    db: Session,
    batch_id: str,
    batch_kind: str,
    items: List[Dict[str, Any]],
    reminder_id: Optional[str] = None,
    departure_id: Optional[str] = None,
    triggered_by: Optional[str] = None,
) -> List[models.NotificationAttemptModel]:
    """
    Create PENDING attempts for a batch.

    Args:
        items: dicts with "recipient", "normalized_recipient" and "message"
    """
    attempts = []
    for item in items:
        attempt = models.NotificationAttemptModel(
            batch_id=batch_id,
            batch_kind=batch_kind,
            reminder_id=str(reminder_id) if reminder_id else None,
            departure_id=departure_id,
            recipient=item["recipient"],
            normalized_recipient=item.get("normalized_recipient"),
            message=item["message"],
            status="PENDING",
            attempt_count=0,
            triggered_by=triggered_by,
        )
        db.add(attempt)
        attempts.append(attempt)
    db.commit()
    for attempt in attempts:
        db.refresh(attempt)
    return attempts


def update_attempt(db: Session, attempt_id: str, **values: Any) -> None:
    db.query(models.NotificationAttemptModel).filter(
        models.NotificationAttemptModel.id == str(attempt_id)
    ).update(values, synchronize_session=False)
    db.commit()


def fail_pending_attempts(
    db: Session,
    batch_id: str,
    failure_kind: str,
    error_message: str,
) -> int:
    """Mark every attempt still PENDING in the batch as FAILED."""
    count = db.query(models.NotificationAttemptModel).filter(
        models.NotificationAttemptModel.batch_id == batch_id,
        models.NotificationAttemptModel.status == "PENDING",
    ).update(
        {
            "status": "FAILED",
            "failure_kind": failure_kind,
            "error_message": error_message,
        },
        synchronize_session=False,
    )
    db.commit()
    return count


def list_attempts(
    db: Session,
    batch_id: Optional[str] = None,
    departure_id: Optional[str] = None,
    limit: int = 200,
) -> List[models.NotificationAttemptModel]:
    query = db.query(models.NotificationAttemptModel)
    if batch_id:
        query = query.filter(models.NotificationAttemptModel.batch_id == batch_id)
    if departure_id:
        query = query.filter(models.NotificationAttemptModel.departure_id == departure_id)
    return query.order_by(models.NotificationAttemptModel.created_at.desc()).limit(limit).all()


def attempt_status_counts(
    db: Session,
    departure_ids: Iterable[str],
) -> Dict[str, Dict[str, int]]:
    """Per-departure PENDING/SENT/FAILED counts across all batches."""
    ids = list(departure_ids)
    counts: Dict[str, Dict[str, int]] = {
        dep_id: {"PENDING": 0, "SENT": 0, "FAILED": 0} for dep_id in ids
    }
    if not ids:
        return counts
    rows = db.query(
        models.NotificationAttemptModel.departure_id,
        models.NotificationAttemptModel.status,
        func.count(models.NotificationAttemptModel.id),
    ).filter(
        models.NotificationAttemptModel.departure_id.in_(ids)
    ).group_by(
        models.NotificationAttemptModel.departure_id,
        models.NotificationAttemptModel.status,
    ).all()
    for dep_id, status, total in rows:
        counts.setdefault(dep_id, {"PENDING": 0, "SENT": 0, "FAILED": 0})[status] = int(total)
    return counts
