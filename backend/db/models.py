"""
SQLAlchemy models for the shuttle tracking database.

These models define the database schema for:
- Routes, departures and bookings (owned by the booking subsystem, read-only here)
- Tracking sessions, location samples and trip events
- Reminder records and notification attempts
"""

from sqlalchemy import (
    Column, String, Integer, Float, DateTime,
    Boolean, ForeignKey, JSON, Text, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.dialects.postgresql import UUID as PGUUID
import uuid
from datetime import datetime, timezone

Base = declarative_base()


# Cross-database compatible types.
# PostgreSQL keeps native UUID, SQLite uses String fallback.
UUIDType = PGUUID(as_uuid=False).with_variant(String(36), "sqlite")


def _utc_now() -> datetime:
    # Stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Booking subsystem tables (read-only for this service)
# =============================================================================

class RouteModel(Base):
    """Ruta fija origen -> destino"""
    __tablename__ = "routes"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    origin_name = Column(String, nullable=False)
    origin_lat = Column(Float, nullable=False)
    origin_lon = Column(Float, nullable=False)
    destination_name = Column(String, nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lon = Column(Float, nullable=False)
    waypoint_name = Column(String, nullable=True)
    waypoint_lat = Column(Float, nullable=True)
    waypoint_lon = Column(Float, nullable=True)
    duration_minutes = Column(Integer, nullable=False)

    departures = relationship("DepartureModel", back_populates="route")

    def __repr__(self):
        return f"<RouteModel(id='{self.id}', name='{self.name}')>"


class DepartureModel(Base):
    __tablename__ = "departures"

    id = Column(String, primary_key=True)
    route_id = Column(String, ForeignKey("routes.id"), nullable=False)
    scheduled_at = Column(DateTime, nullable=False, index=True)
    capacity = Column(Integer, nullable=False, default=14)
    status = Column(String, nullable=False, default="SCHEDULED")  # booking-side status, CANCELLED excluded
    driver_id = Column(String, nullable=True, index=True)
    driver_name = Column(String, nullable=True)
    driver_phone = Column(String, nullable=True)

    route = relationship("RouteModel", back_populates="departures")
    bookings = relationship("BookingModel", back_populates="departure")

    def __repr__(self):
        return f"<DepartureModel(id='{self.id}', scheduled_at='{self.scheduled_at}')>"


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String, primary_key=True)
    departure_id = Column(String, ForeignKey("departures.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="PAID")
    customer_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    pickup_location = Column(String, nullable=True)

    departure = relationship("DepartureModel", back_populates="bookings")

    def __repr__(self):
        return f"<BookingModel(id='{self.id}', departure_id='{self.departure_id}')>"


# =============================================================================
# Trip tracking
# =============================================================================

class TrackingSessionModel(Base):
    """Estado operativo en vivo de una salida"""
    __tablename__ = "tracking_sessions"

    id = Column(UUIDType, primary_key=True, default=lambda: str(uuid.uuid4()))
    departure_id = Column(String, nullable=False, unique=True)
    status = Column(String, nullable=False, default="SCHEDULED")
    version = Column(Integer, nullable=False, default=1)
    passenger_count = Column(Integer, nullable=False, default=0)
    trip_started_at = Column(DateTime, nullable=True)
    arrived_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    delay_minutes = Column(Integer, nullable=False, default=0)
    delay_active = Column(Boolean, nullable=False, default=False)
    delay_reason = Column(String, nullable=True)
    last_status_change_at = Column(DateTime, default=_utc_now, nullable=False)
    last_status_change_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utc_now, nullable=False)

    samples = relationship(
        "LocationSampleModel",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="LocationSampleModel.captured_at",
    )
    events = relationship(
        "TripEventModel",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="TripEventModel.created_at",
    )

    def __repr__(self):
        return (
            f"<TrackingSessionModel(id='{self.id}', departure_id='{self.departure_id}', "
            f"status='{self.status}', version={self.version})>"
        )


class LocationSampleModel(Base):
    __tablename__ = "location_samples"
    __table_args__ = (
        Index("ix_location_samples_session_captured", "session_id", "captured_at"),
    )

    id = Column(UUIDType, primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(
        UUIDType,
        ForeignKey("tracking_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    speed = Column(Float, nullable=True)  # m/s
    heading = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)  # metres
    captured_at = Column(DateTime, nullable=False)
    received_at = Column(DateTime, default=_utc_now, nullable=False)

    session = relationship("TrackingSessionModel", back_populates="samples")

    def __repr__(self):
        return f"<LocationSampleModel(session_id='{self.session_id}', captured_at='{self.captured_at}')>"


class TripEventModel(Base):
    """Audit trail of accepted transitions."""
    __tablename__ = "trip_events"

    id = Column(UUIDType, primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(
        UUIDType,
        ForeignKey("tracking_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type = Column(String, nullable=False)  # STATUS_CHANGE, TRIP_STARTED, DELAY_REPORTED, TRIP_COMPLETED
    from_status = Column(String, nullable=False)
    to_status = Column(String, nullable=False)
    actor = Column(String, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_utc_now, nullable=False)

    session = relationship("TrackingSessionModel", back_populates="events")

    def __repr__(self):
        return f"<TripEventModel(event_type='{self.event_type}', to_status='{self.to_status}')>"


# =============================================================================
# Reminders and notifications
# =============================================================================

class ReminderRecordModel(Base):
    """One automatic reminder batch per departure."""
    __tablename__ = "reminder_records"
    __table_args__ = (
        UniqueConstraint("departure_id", name="uq_reminder_records_departure"),
    )

    id = Column(UUIDType, primary_key=True, default=lambda: str(uuid.uuid4()))
    departure_id = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="automatic")
    status = Column(String, nullable=False, default="dispatching")  # dispatching|completed|gateway_unavailable
    recipient_count = Column(Integer, nullable=False, default=0)
    sent_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, default=_utc_now, nullable=False)

    attempts = relationship("NotificationAttemptModel", back_populates="reminder")

    def __repr__(self):
        return (
            f"<ReminderRecordModel(departure_id='{self.departure_id}', status='{self.status}', "
            f"sent={self.sent_count}, failed={self.failed_count})>"
        )


class NotificationAttemptModel(Base):
    __tablename__ = "notification_attempts"

    id = Column(UUIDType, primary_key=True, default=lambda: str(uuid.uuid4()))
    reminder_id = Column(
        UUIDType,
        ForeignKey("reminder_records.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    departure_id = Column(String, nullable=True, index=True)
    batch_id = Column(String, nullable=False, index=True)
    batch_kind = Column(String, nullable=False, default="reminder")  # reminder|manual|status_change
    recipient = Column(String, nullable=False)
    normalized_recipient = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="PENDING")  # PENDING|SENT|FAILED
    failure_kind = Column(String, nullable=True)  # transient|permanent|gateway_unavailable
    error_message = Column(Text, nullable=True)
    external_id = Column(String, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempted_at = Column(DateTime, nullable=True)
    triggered_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utc_now, nullable=False)

    reminder = relationship("ReminderRecordModel", back_populates="attempts")

    def __repr__(self):
        return f"<NotificationAttemptModel(recipient='{self.recipient}', status='{self.status}')>"
