"""
Cache router.

Endpoints under /cache/* for cache statistics and window trimming.
"""

from fastapi import APIRouter, Depends

from lectio_sync.engine import SyncEngine

from ..dependencies.engine import get_engine
from ..schemas.sync import CacheStatsResponse, TrimResponse


router = APIRouter()


@router.get("/stats", response_model=CacheStatsResponse)
def get_cache_stats(engine: SyncEngine = Depends(get_engine)):
    return CacheStatsResponse(**engine.get_cache_stats())


@router.post("/trim", response_model=TrimResponse)
def trim_cache(engine: SyncEngine = Depends(get_engine)):
    """Delete cached days (and their readings) outside the rolling window."""
    return TrimResponse(removed_days=engine.trim_cache())
