"""
Pydantic schemas for API requests and responses.

These schemas are used for:
- Request validation (input data)
- Response serialization (output data)
- Type safety between API and database

Note: These are separate from the domain models in models.py (Departure, ETAEstimate, etc.)
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import ETAEstimate, LocationFix, TripStatus


# =============================================================================
# Tracking Session Schemas
# =============================================================================

class TransitionRequest(BaseModel):
    """Driver request to advance a trip"""
    driver_id: str = Field(min_length=1, max_length=64)
    status: TripStatus
    passenger_count: Optional[int] = Field(default=None, ge=0, le=200)
    delay_minutes: Optional[int] = Field(default=None, ge=0, le=24 * 60)
    delay_reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    location: Optional[LocationFix] = None


class TrackingSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    departure_id: str
    status: TripStatus
    version: int
    passenger_count: int
    trip_started_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    delay_minutes: int = 0
    delay_active: bool = False
    delay_reason: Optional[str] = None
    last_status_change_at: datetime
    last_status_change_by: Optional[str] = None


class TransitionResponse(BaseModel):
    session: TrackingSessionResponse
    location_recorded: bool = False
    notifications_queued: int = 0


# =============================================================================
# Location Schemas
# =============================================================================

class LocationSampleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    lat: float
    lon: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    accuracy: Optional[float] = None
    captured_at: datetime
    received_at: datetime


# =============================================================================
# Driver / Live Schemas
# =============================================================================

class DriverDepartureResponse(BaseModel):
    departure_id: str
    route_name: str
    origin: str
    destination: str
    scheduled_at: datetime
    capacity: int
    booked_passengers: int
    driver_id: Optional[str] = None
    session_id: Optional[str] = None
    status: TripStatus = TripStatus.SCHEDULED
    passenger_count: int = 0


class DriverContact(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class LivePosition(BaseModel):
    lat: float
    lon: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    captured_at: datetime


class LiveStatusResponse(BaseModel):
    departure_id: str
    route_name: str
    origin: str
    destination: str
    scheduled_at: datetime
    status: TripStatus
    status_message: str
    delay_minutes: int = 0
    is_delayed: bool = False
    passenger_count: int = 0
    eta: ETAEstimate
    last_update_at: Optional[datetime] = None
    position: Optional[LivePosition] = None
    driver: Optional[DriverContact] = None
    tracking_url: str


# =============================================================================
# Reminder / Notification Schemas
# =============================================================================

TemplateName = Literal[
    "PICKUP_REMINDER",
    "BOARDING_STARTED",
    "DEPARTED",
    "DELAYED",
    "ARRIVED",
    "TRIP_COMPLETED",
]


class ReminderTriggerRequest(BaseModel):
    """Operator trigger: window scan, or ad hoc send to a departure / numbers"""
    mode: Literal["window", "manual"] = "manual"
    departure_id: Optional[str] = None
    phone_numbers: List[str] = Field(default_factory=list, max_length=500)
    template: Optional[TemplateName] = None
    message: Optional[str] = Field(default=None, max_length=1600)
    operator_id: Optional[str] = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def validate_target(self) -> "ReminderTriggerRequest":
        if self.mode == "manual":
            if not self.departure_id and not self.phone_numbers:
                raise ValueError("departure_id or phone_numbers is required")
            if not self.template and not (self.message and self.message.strip()):
                raise ValueError("template or message is required")
            if self.template and not self.departure_id:
                raise ValueError("templates need a departure_id to render")
        return self


class DepartureReminderResult(BaseModel):
    departure_id: str
    route_name: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    recipients: int = 0
    sent: int = 0
    failed: int = 0
    status: str
    error: Optional[str] = None


class ReminderRunResponse(BaseModel):
    processed_at: datetime
    skipped: bool = False
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    departures_processed: int = 0
    departures_already_reminded: int = 0
    total_sent: int = 0
    total_failed: int = 0
    results: List[DepartureReminderResult] = Field(default_factory=list)


class ManualSendResponse(BaseModel):
    batch_id: str
    departure_id: Optional[str] = None
    recipients: int
    sent: int
    failed: int
    message: str


class ReminderStatusEntry(BaseModel):
    departure_id: str
    route_name: str
    scheduled_at: datetime
    eligible_recipients: int
    reminded: bool
    reminder_status: Optional[str] = None
    reminder_sent_at: Optional[datetime] = None
    counts: Dict[str, int] = Field(default_factory=dict)


class ReminderStatusResponse(BaseModel):
    current_time: datetime
    window_start: datetime
    window_end: datetime
    departures: List[ReminderStatusEntry]
    eligible_recipients: int
    scheduler_running: bool = False


class NotificationAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    batch_id: str
    batch_kind: str
    departure_id: Optional[str] = None
    reminder_id: Optional[str] = None
    recipient: str
    message: str
    status: str
    failure_kind: Optional[str] = None
    error_message: Optional[str] = None
    attempt_count: int
    last_attempted_at: Optional[datetime] = None
    created_at: datetime
