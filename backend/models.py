from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class TripStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    BOARDING = "BOARDING"
    EN_ROUTE = "EN_ROUTE"
    DELAYED = "DELAYED"
    ARRIVED = "ARRIVED"
    COMPLETED = "COMPLETED"


TRACKABLE_STATUSES = {TripStatus.BOARDING, TripStatus.EN_ROUTE, TripStatus.DELAYED}
FINISHED_STATUSES = {TripStatus.ARRIVED, TripStatus.COMPLETED}


class GeoPoint(BaseModel):
    lat: float
    lon: float
    name: Optional[str] = None

class RouteInfo(BaseModel):
    id: str
    name: str
    origin: GeoPoint
    destination: GeoPoint
    waypoint: Optional[GeoPoint] = None
    duration_minutes: int  # scheduled

class BookingContact(BaseModel):
    booking_id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    pickup_location: Optional[str] = None
    status: str = "PAID"

class DriverInfo(BaseModel):
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None

class Departure(BaseModel):
    """Read-only view of a departure owned by the booking subsystem."""
    id: str
    scheduled_at: datetime
    route: RouteInfo
    capacity: int
    driver: Optional[DriverInfo] = None
    bookings: List[BookingContact] = Field(default_factory=list)

    @property
    def confirmed_bookings(self) -> List[BookingContact]:
        return [b for b in self.bookings if b.status == "PAID"]

class LocationFix(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    speed: Optional[float] = Field(default=None, description="metres per second")
    heading: Optional[float] = Field(default=None, ge=0, le=360)
    accuracy: Optional[float] = Field(default=None, ge=0)
    captured_at: Optional[datetime] = None

class ETAEstimate(BaseModel):
    estimated_arrival: datetime
    minutes_remaining: int
    confidence: int  # 0-100
    progress_percentage: float  # 0-100
    source: str  # schedule | gps | actual
    remaining_distance_km: Optional[float] = None
    progress_method: str = "time"
    progress_cross_check: Optional[float] = None
    sample_age_minutes: Optional[float] = None
