"""
Append-only store of GPS samples per tracking session.

Samples are accepted only while the session is BOARDING, EN_ROUTE or DELAYED.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from db import crud as db_crud
from db.models import LocationSampleModel
from errors import NotFound, SessionNotTrackable
from models import LocationFix, TRACKABLE_STATUSES, TripStatus

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class LocationStore:
    def __init__(self, db: Session, clock: Callable[[], datetime] = _utc_now) -> None:
        self.db = db
        self.clock = clock

    def append(self, session_id: str, fix: LocationFix) -> LocationSampleModel:
        """
        Append one sample to a trackable session.

        The session row is locked for the duration of the insert so a
        concurrent transition to ARRIVED cannot interleave.

        Raises:
            NotFound: unknown session
            SessionNotTrackable: session is SCHEDULED, ARRIVED or COMPLETED
        """
        try:
            session = db_crud.get_session_for_update(self.db, session_id)
            if session is None:
                raise NotFound("tracking session", session_id)
            status = TripStatus(session.status)
            if status not in TRACKABLE_STATUSES:
                raise SessionNotTrackable(session_id, status.value)

            now = self.clock()
            captured_at = _naive_utc(fix.captured_at) or now
            # captured_at is never later than receipt
            if captured_at > now:
                captured_at = now
            sample = db_crud.add_location_sample(
                self.db,
                session_id=session_id,
                lat=fix.lat,
                lon=fix.lon,
                captured_at=captured_at,
                speed=fix.speed,
                heading=fix.heading,
                accuracy=fix.accuracy,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(sample)
        logger.debug(f"[GPS] session {session_id}: {fix.lat:.5f},{fix.lon:.5f}")
        return sample

    def latest(self, session_id: str, limit: int = 5) -> List[LocationSampleModel]:
        """Most recent samples, newest first."""
        return db_crud.get_latest_samples(self.db, session_id, limit=limit)
