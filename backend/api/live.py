"""
Passenger live-status API.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from db import schemas
from db.database import get_db
from errors import NotFound
from models import ETAEstimate
from services.live_status import LiveStatusService

router = APIRouter(prefix="/api/live", tags=["live"])


@router.get("/departures/{departure_id}", response_model=schemas.LiveStatusResponse)
async def get_live_status(departure_id: str, db: Session = Depends(get_db)) -> schemas.LiveStatusResponse:
    try:
        return LiveStatusService(db).live_status(departure_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/departures/{departure_id}/eta", response_model=ETAEstimate)
async def get_eta(departure_id: str, db: Session = Depends(get_db)) -> ETAEstimate:
    try:
        return LiveStatusService(db).eta(departure_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
