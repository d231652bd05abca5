"""
Pickup reminder scheduler.

Every run scans the departures scheduled inside the lookahead window
[now + 30 min, now + 40 min] and sends one PICKUP_REMINDER batch per departure
that has never been reminded. The departure is claimed with a conditional
insert of its ReminderRecord before anything is sent, so overlapping runs
(here or in another process) cannot both dispatch the same departure.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from config import config
from db import crud as db_crud
from db import database
from db.schemas import (
    DepartureReminderResult,
    ManualSendResponse,
    ReminderRunResponse,
    ReminderStatusEntry,
    ReminderStatusResponse,
    ReminderTriggerRequest,
)
from errors import GatewayUnavailable
from models import BookingContact, Departure
from services import message_templates
from services.departure_catalog import DepartureCatalog
from services.notification_dispatcher import NotificationDispatcher, normalize_phone

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def eligible_recipients(departure: Departure) -> List[BookingContact]:
    """Confirmed bookings with a usable phone field."""
    return [b for b in departure.confirmed_bookings if b.phone and b.phone.strip()]


class ReminderScheduler:
    # One scan at a time per process
    _run_in_progress = False

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        catalog: Optional[DepartureCatalog] = None,
        clock: Callable[[], datetime] = _utc_now,
        window_start_minutes: Optional[int] = None,
        window_end_minutes: Optional[int] = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher(db)
        self.catalog = catalog or DepartureCatalog(db)
        self.clock = clock
        self.window_start_minutes = (
            config.REMINDER_WINDOW_START_MINUTES if window_start_minutes is None else window_start_minutes
        )
        self.window_end_minutes = (
            config.REMINDER_WINDOW_END_MINUTES if window_end_minutes is None else window_end_minutes
        )

    @classmethod
    def is_running(cls) -> bool:
        return cls._run_in_progress

    def window(self, now: datetime) -> Tuple[datetime, datetime]:
        return (
            now + timedelta(minutes=self.window_start_minutes),
            now + timedelta(minutes=self.window_end_minutes),
        )

    # ------------------------------------------------------------------
    # Scheduled scan
    # ------------------------------------------------------------------

    async def run_once(self) -> ReminderRunResponse:
        """
        Execute one scan of the reminder window.

        Returns a summary; a run started while another is in progress in this
        process returns immediately with skipped=True.
        """
        now = self.clock()
        if ReminderScheduler._run_in_progress:
            logger.info("[Reminders] Previous run still in progress, skipping")
            return ReminderRunResponse(processed_at=now, skipped=True)

        ReminderScheduler._run_in_progress = True
        try:
            return await self._scan(now)
        finally:
            ReminderScheduler._run_in_progress = False

    async def _scan(self, now: datetime) -> ReminderRunResponse:
        window_start, window_end = self.window(now)
        departures = self.catalog.list_between(window_start, window_end)
        existing = db_crud.get_reminder_records(self.db, [d.id for d in departures])

        summary = ReminderRunResponse(
            processed_at=now,
            window_start=window_start,
            window_end=window_end,
        )
        logger.info(
            f"[Reminders] Scanning {window_start:%H:%M}-{window_end:%H:%M}: "
            f"{len(departures)} departure(s) in window"
        )

        for departure in departures:
            if departure.id in existing:
                summary.departures_already_reminded += 1
                continue
            try:
                result = await self._remind(departure, now)
            except Exception as exc:
                self.db.rollback()
                logger.exception(f"[Reminders] Departure {departure.id} failed: {exc}")
                result = DepartureReminderResult(
                    departure_id=departure.id,
                    route_name=departure.route.name,
                    scheduled_at=departure.scheduled_at,
                    status="error",
                    error=str(exc),
                )
            if result is None:
                summary.departures_already_reminded += 1
                continue
            summary.results.append(result)
            summary.departures_processed += 1
            summary.total_sent += result.sent
            summary.total_failed += result.failed

        logger.info(
            f"[Reminders] Run complete: processed={summary.departures_processed}, "
            f"already_reminded={summary.departures_already_reminded}, "
            f"sent={summary.total_sent}, failed={summary.total_failed}"
        )
        return summary

    async def _remind(self, departure: Departure, now: datetime) -> Optional[DepartureReminderResult]:
        """Claim and remind one departure. Returns None when another run owns it."""
        recipients = eligible_recipients(departure)
        record = db_crud.insert_reminder_record_if_absent(
            self.db,
            departure_id=departure.id,
            recipient_count=len(recipients),
            sent_at=now,
        )
        if record is None:
            logger.info(f"[Reminders] Departure {departure.id} already claimed")
            return None
        record_id = str(record.id)

        result = DepartureReminderResult(
            departure_id=departure.id,
            route_name=departure.route.name,
            scheduled_at=departure.scheduled_at,
            recipients=len(recipients),
            status="completed",
        )

        if not recipients:
            db_crud.finish_reminder_record(self.db, record_id, "completed", 0, 0)
            logger.info(f"[Reminders] Departure {departure.id} has no recipients with a phone")
            return result

        messages = [
            (
                booking.phone,
                message_templates.render(
                    "PICKUP_REMINDER",
                    departure,
                    pickup_location=booking.pickup_location,
                ),
            )
            for booking in recipients
        ]
        try:
            dispatch = await self.dispatcher.dispatch(
                messages,
                batch_kind="reminder",
                reminder_id=record_id,
                departure_id=departure.id,
            )
        except GatewayUnavailable as exc:
            db_crud.finish_reminder_record(
                self.db, record_id, "gateway_unavailable", exc.sent, exc.failed, exc.reason
            )
            logger.error(
                f"[Reminders] Departure {departure.id}: gateway unavailable ({exc.reason}); "
                f"manual re-trigger required"
            )
            result.sent = exc.sent
            result.failed = exc.failed
            result.status = "gateway_unavailable"
            result.error = exc.reason
            return result

        db_crud.finish_reminder_record(self.db, record_id, "completed", dispatch.sent, dispatch.failed)
        result.sent = dispatch.sent
        result.failed = dispatch.failed
        logger.info(
            f"[Reminders] Departure {departure.id} ({departure.route.name}): "
            f"sent={dispatch.sent}, failed={dispatch.failed}"
        )
        return result

    # ------------------------------------------------------------------
    # Operations view
    # ------------------------------------------------------------------

    def status(self, scheduler_running: bool = False) -> ReminderStatusResponse:
        now = self.clock()
        window_start, window_end = self.window(now)
        departures = self.catalog.list_between(window_start, window_end)
        ids = [d.id for d in departures]
        records = db_crud.get_reminder_records(self.db, ids)
        counts = db_crud.attempt_status_counts(self.db, ids)

        entries = []
        for departure in departures:
            record = records.get(departure.id)
            entries.append(
                ReminderStatusEntry(
                    departure_id=departure.id,
                    route_name=departure.route.name,
                    scheduled_at=departure.scheduled_at,
                    eligible_recipients=len(eligible_recipients(departure)),
                    reminded=record is not None,
                    reminder_status=record.status if record else None,
                    reminder_sent_at=record.sent_at if record else None,
                    counts=counts.get(departure.id, {}),
                )
            )

        return ReminderStatusResponse(
            current_time=now,
            window_start=window_start,
            window_end=window_end,
            departures=entries,
            eligible_recipients=sum(e.eligible_recipients for e in entries),
            scheduler_running=scheduler_running,
        )

    # ------------------------------------------------------------------
    # Manual trigger
    # ------------------------------------------------------------------

    async def trigger(self, request: ReminderTriggerRequest) -> Union[ReminderRunResponse, ManualSendResponse]:
        if request.mode == "window":
            return await self.run_once()
        return await self.send_manual(request)

    async def send_manual(self, request: ReminderTriggerRequest) -> ManualSendResponse:
        """
        Operator send to a departure's passengers and/or explicit numbers.

        Never reads or writes the ReminderRecord of the departure.

        Raises:
            NotFound: unknown departure
            ValueError: nothing to send to
            GatewayUnavailable: gateway unreachable for the batch
        """
        departure = self.catalog.get(request.departure_id) if request.departure_id else None
        context = self._template_context(departure) if departure is not None else {}

        def body_for(pickup_location: Optional[str] = None) -> str:
            if request.template:
                return message_templates.render(
                    request.template,
                    departure,
                    pickup_location=pickup_location,
                    **context,
                )
            return request.message.strip()

        messages: List[Tuple[str, str]] = []
        seen = set()

        def add(phone: str, body: str) -> None:
            key = normalize_phone(phone) or phone.strip()
            if key in seen:
                return
            seen.add(key)
            messages.append((phone, body))

        if departure is not None:
            for booking in eligible_recipients(departure):
                add(booking.phone, body_for(booking.pickup_location))
        for phone in request.phone_numbers:
            if phone and phone.strip():
                add(phone, body_for())

        if not messages:
            raise ValueError("no recipients")

        result = await self.dispatcher.dispatch(
            messages,
            batch_kind="manual",
            departure_id=departure.id if departure else None,
            triggered_by=request.operator_id,
        )
        logger.info(
            f"[Reminders] Manual send by {request.operator_id or 'operator'}: "
            f"{len(messages)} recipient(s), sent={result.sent}, failed={result.failed}"
        )
        return ManualSendResponse(
            batch_id=result.batch_id,
            departure_id=departure.id if departure else None,
            recipients=len(messages),
            sent=result.sent,
            failed=result.failed,
            message=f"Sent {result.sent} of {len(messages)} messages",
        )

    def _template_context(self, departure: Departure) -> Dict[str, object]:
        session = db_crud.get_session_by_departure(self.db, departure.id)
        if session is None:
            return {}
        context: Dict[str, object] = {"reason": session.delay_reason}
        if session.delay_minutes:
            context["delay_minutes"] = int(session.delay_minutes)
        return context


# ----------------------------------------------------------------------
# Background execution
# ----------------------------------------------------------------------

async def run_scheduled_scan() -> ReminderRunResponse:
    """Run one scan with its own database session."""
    if database.SessionLocal is None:
        raise RuntimeError("Database is not available")
    db = database.SessionLocal()
    try:
        return await ReminderScheduler(db).run_once()
    finally:
        db.close()


class ReminderLoop:
    """In-process timer that runs the scan every REMINDER_INTERVAL_SECONDS."""

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        scan: Callable[[], Awaitable[ReminderRunResponse]] = run_scheduled_scan,
    ) -> None:
        self.interval_seconds = interval_seconds or config.REMINDER_INTERVAL_SECONDS
        self._scan = scan
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="reminder-loop")
        logger.info(f"[Reminders] Loop started, every {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[Reminders] Loop stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self._scan()
            except Exception as exc:
                logger.error(f"[Reminders] Scheduled run failed: {exc}")
            await asyncio.sleep(self.interval_seconds)


reminder_loop = ReminderLoop()
