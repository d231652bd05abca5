"""
Notification dispatcher.

Sends one batch of SMS messages through the configured gateway and records a
NotificationAttempt per recipient. Individual failures are data, never
exceptions: transient errors are retried with exponential backoff up to a
fixed bound, permanent errors fail immediately. Only a gateway that is
unreachable for the whole batch is raised to the caller, after every attempt
still pending has been marked FAILED.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from config import config
from db import crud as db_crud
from errors import GatewayUnavailable, PermanentSendFailure, TransientSendFailure
from services.sms_gateway import SmsGateway, get_sms_gateway

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize to E.164.

    10 digits -> +1XXXXXXXXXX (US), 11 digits starting with 1 -> +1...,
    numbers already prefixed with '+' are kept. Anything else is unusable.
    """
    if not phone:
        return None
    raw = phone.strip()
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if raw.startswith("+") and 8 <= len(digits) <= 15:
        return f"+{digits}"
    return None


@dataclass
class DispatchResult:
    batch_id: str
    sent: int = 0
    failed: int = 0
    attempt_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.attempt_ids)


class NotificationDispatcher:
    def __init__(
        self,
        db: Session,
        gateway: Optional[SmsGateway] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.gateway = gateway or get_sms_gateway()
        self.max_retries = config.SMS_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = config.SMS_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.timeout_seconds = timeout_seconds or config.SMS_TIMEOUT_SECONDS
        self.max_concurrency = max(1, max_concurrency or config.SMS_MAX_CONCURRENCY)
        self._sleep = sleep

    async def dispatch(
        self,
        messages: Sequence[Tuple[str, str]],
        batch_kind: str = "reminder",
        reminder_id: Optional[str] = None,
        departure_id: Optional[str] = None,
        triggered_by: Optional[str] = None,
    ) -> DispatchResult:
        """
        Send a batch of (recipient, message) pairs.

        Returns:
            DispatchResult with aggregate sent/failed counts

        Raises:
            GatewayUnavailable: the gateway could not be reached; the exception
                carries the final batch counts
        """
        batch_id = str(uuid4())
        items = [
            {"recipient": phone, "normalized_recipient": normalize_phone(phone), "message": body}
            for phone, body in messages
        ]
        attempts = db_crud.create_attempts(
            self.db,
            batch_id=batch_id,
            batch_kind=batch_kind,
            items=items,
            reminder_id=reminder_id,
            departure_id=departure_id,
            triggered_by=triggered_by,
        )
        jobs = [
            (str(attempt.id), item["normalized_recipient"], item["message"])
            for attempt, item in zip(attempts, items)
        ]
        result = DispatchResult(batch_id=batch_id, attempt_ids=[job[0] for job in jobs])
        if not jobs:
            return result

        stop = asyncio.Event()
        unavailable_reasons: List[str] = []
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def deliver(attempt_id: str, to: Optional[str], body: str) -> Optional[bool]:
            if to is None:
                self._mark_failed(attempt_id, "permanent", "invalid phone number", attempts=0)
                return False
            async with semaphore:
                return await self._deliver(attempt_id, to, body, stop, unavailable_reasons)

        outcomes = await asyncio.gather(*(deliver(*job) for job in jobs))
        result.sent = sum(1 for outcome in outcomes if outcome is True)
        result.failed = sum(1 for outcome in outcomes if outcome is False)

        if stop.is_set():
            reason = unavailable_reasons[0] if unavailable_reasons else "gateway unavailable"
            result.failed += db_crud.fail_pending_attempts(self.db, batch_id, "gateway_unavailable", reason)
            logger.error(
                f"[SMS] Batch {batch_id} aborted, gateway unavailable: {reason} "
                f"(sent={result.sent}, failed={result.failed})"
            )
            raise GatewayUnavailable(reason, sent=result.sent, failed=result.failed)

        logger.info(f"[SMS] Batch {batch_id} ({batch_kind}): sent={result.sent}, failed={result.failed}")
        return result

    async def _deliver(
        self,
        attempt_id: str,
        to: str,
        body: str,
        stop: asyncio.Event,
        unavailable_reasons: List[str],
    ) -> Optional[bool]:
        """
        Returns True when sent, False when failed, None when left PENDING
        because the gateway went away.
        """
        tries = 0
        while True:
            if stop.is_set():
                return None
            tries += 1
            try:
                external_id = await asyncio.wait_for(self.gateway.send(to, body), timeout=self.timeout_seconds)
            except GatewayUnavailable as exc:
                unavailable_reasons.append(exc.reason)
                stop.set()
                db_crud.update_attempt(self.db, attempt_id, attempt_count=tries, last_attempted_at=_utc_now())
                return None
            except PermanentSendFailure as exc:
                self._mark_failed(attempt_id, "permanent", exc.reason, attempts=tries)
                return False
            except (TransientSendFailure, asyncio.TimeoutError) as exc:
                reason = exc.reason if isinstance(exc, TransientSendFailure) else "gateway timeout"
                if tries > self.max_retries:
                    self._mark_failed(attempt_id, "transient", reason, attempts=tries)
                    return False
                logger.warning(f"[SMS] Transient failure to {to} (try {tries}): {reason}")
                db_crud.update_attempt(
                    self.db,
                    attempt_id,
                    attempt_count=tries,
                    last_attempted_at=_utc_now(),
                    error_message=reason,
                )
                await self._sleep(self.backoff_seconds * (2 ** (tries - 1)))
                continue
            except Exception as exc:
                # not retried
                reason = f"unexpected {type(exc).__name__}: {exc}"
                logger.error(f"[SMS] Unexpected gateway error for {to}: {reason}")
                self._mark_failed(attempt_id, "permanent", reason, attempts=tries)
                return False

            db_crud.update_attempt(
                self.db,
                attempt_id,
                status="SENT",
                external_id=external_id,
                attempt_count=tries,
                last_attempted_at=_utc_now(),
                failure_kind=None,
                error_message=None,
            )
            return True

    def _mark_failed(self, attempt_id: str, kind: str, reason: str, attempts: int) -> None:
        values = {
            "status": "FAILED",
            "failure_kind": kind,
            "error_message": reason,
            "attempt_count": attempts,
        }
        if attempts:
            values["last_attempted_at"] = _utc_now()
        db_crud.update_attempt(self.db, attempt_id, **values)
