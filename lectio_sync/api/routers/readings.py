"""
Readings router.

Offline-first read path: cached content is served directly; a miss
inside the cache window is fetched on demand when not offline.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException

from lectio_sync.engine import SyncEngine

from ..dependencies.engine import get_engine
from ..schemas.readings import (
    DayReadingsResponse,
    LiturgicalDayResponse,
    LiturgicalReadingResponse,
)


router = APIRouter()


@router.get("/{target_date}", response_model=DayReadingsResponse)
def get_day_readings(target_date: date, engine: SyncEngine = Depends(get_engine)):
    """
    Get a liturgical day and its readings in order.

    Returns 404 when the day is outside the cache window, or missing and
    not retrievable (offline or remote failure).
    """
    found = engine.read_day(target_date)
    if found is None:
        raise HTTPException(
            status_code=404,
            detail=f"No readings available for {target_date.isoformat()}"
        )

    day, readings = found
    return DayReadingsResponse(
        day=LiturgicalDayResponse(**day.to_dict()),
        readings=[LiturgicalReadingResponse(**r.to_dict()) for r in readings],
    )
