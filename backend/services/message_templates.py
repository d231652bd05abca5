"""
SMS message templates for trip events and pickup reminders.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional

from config import config
from models import Departure

SUPPORT_PHONE = "(555) 123-4567"


def tracking_path(departure_id: str) -> str:
    return f"/live/{departure_id}"


def tracking_url(departure_id: str) -> str:
    return f"{config.TRACKING_BASE_URL.rstrip('/')}{tracking_path(departure_id)}"


def to_local(value: datetime) -> datetime:
    """Naive-UTC (or aware) timestamp in DISPLAY_TIMEZONE."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(config.display_zone())


def local_today(now: Optional[datetime] = None) -> date:
    return to_local(now or datetime.now(timezone.utc)).date()


def format_clock(value: datetime) -> str:
    """12-hour local clock, e.g. '2:05 PM'."""
    value = to_local(value)
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def pickup_reminder(departure: Departure, pickup_location: Optional[str] = None, **_: object) -> str:
    location = pickup_location or departure.route.origin.name or "the pickup point"
    return (
        f"Reminder: Your shuttle ({departure.route.name}) departs at "
        f"{format_clock(departure.scheduled_at)} from {location}. "
        f"Track live: {tracking_url(departure.id)}"
    )


def boarding_started(departure: Departure, **_: object) -> str:
    return (
        f"Your shuttle is now boarding at {departure.route.origin.name}. "
        f"Track live: {tracking_url(departure.id)}"
    )


def departed(departure: Departure, eta: Optional[datetime] = None, **_: object) -> str:
    eta_text = f" ETA: {format_clock(eta)}." if eta is not None else ""
    return (
        f"Your shuttle has departed {departure.route.origin.name} en route to "
        f"{departure.route.destination.name}.{eta_text} Track live: {tracking_url(departure.id)}"
    )


def delayed(departure: Departure, delay_minutes: int = 15, reason: Optional[str] = None, **_: object) -> str:
    reason_text = f": {reason}" if reason else ""
    return (
        f"Your shuttle is delayed by {delay_minutes} minutes{reason_text}. "
        f"Track live: {tracking_url(departure.id)}"
    )


def arrived(departure: Departure, **_: object) -> str:
    driver_name = departure.driver.name if departure.driver and departure.driver.name else "your driver"
    driver_phone = departure.driver.phone if departure.driver and departure.driver.phone else SUPPORT_PHONE
    return (
        f"Your shuttle has arrived at {departure.route.destination.name}! "
        f"Look for {driver_name}. Call if needed: {driver_phone}"
    )


def trip_completed(departure: Departure, **_: object) -> str:
    return f"Your shuttle trip ({departure.route.name}) is complete. Thank you for riding with us!"


TEMPLATES: Dict[str, Callable[..., str]] = {
    "PICKUP_REMINDER": pickup_reminder,
    "BOARDING_STARTED": boarding_started,
    "DEPARTED": departed,
    "DELAYED": delayed,
    "ARRIVED": arrived,
    "TRIP_COMPLETED": trip_completed,
}

STATUS_TEMPLATES = {
    "BOARDING": "BOARDING_STARTED",
    "EN_ROUTE": "DEPARTED",
    "DELAYED": "DELAYED",
    "ARRIVED": "ARRIVED",
}


def render(template: str, departure: Departure, **context: object) -> str:
    try:
        renderer = TEMPLATES[template]
    except KeyError as exc:
        raise ValueError(f"Unknown message template '{template}'") from exc
    return renderer(departure, **context)
