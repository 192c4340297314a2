"""
Sync router for trigger and status APIs.

Endpoints under /sync/* for manual sync, host background slots,
window preload, pause/resume and ledger queries.

Handlers are plain functions; FastAPI runs them in its threadpool.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query

from lectio_sync.engine import (
    InvalidStateError,
    OutOfWindowError,
    SyncEngine,
    SyncEngineError,
)

from ..dependencies.engine import get_engine
from ..schemas.sync import (
    BackgroundSlotRequest,
    BackgroundSlotResponse,
    BackgroundTimeoutRequest,
    BackgroundTimeoutResponse,
    ControlResponse,
    ManualSyncRequest,
    ManualSyncResponse,
    PerformanceMetricsResponse,
    PreloadRequest,
    PreloadResponse,
    SchedulerStatusResponse,
    SyncJobListResponse,
    SyncJobResponse,
    SyncStatsResponse,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/manual", response_model=ManualSyncResponse)
def manual_sync(
    request: ManualSyncRequest = ManualSyncRequest(),
    engine: SyncEngine = Depends(get_engine),
):
    """
    Run a manual sync for target_date (default today) plus read-ahead.

    Blocks until the reconciliation finishes. Runs even while paused.
    Dates outside the cache window are rejected with 422.
    """
    target_date = request.target_date or engine.today()

    try:
        result = engine.trigger_manual_sync(target_date)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except OutOfWindowError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SyncEngineError as e:
        logger.warning(f"Manual sync for {target_date.isoformat()} failed: {e}")
        raise HTTPException(
            status_code=502,
            detail="Sync failed. Cached content is unchanged; try again later."
        )

    return ManualSyncResponse(
        target_date=target_date,
        readings_created=result.readings_created,
        readings_updated=result.readings_updated,
    )


@router.post("/background", response_model=BackgroundSlotResponse)
def background_slot(
    request: BackgroundSlotRequest = BackgroundSlotRequest(),
    engine: SyncEngine = Depends(get_engine),
):
    """
    Deliver a host-granted background slot.

    The slot is always acknowledged. `dispatched` is false when the
    platform has no background capability or the minimum interval since
    the previous slot has not elapsed.
    """
    task_id = request.task_id or f"bg-{uuid.uuid4().hex[:12]}"
    dispatched = engine.handle_background_slot(task_id)
    return BackgroundSlotResponse(task_id=task_id, acknowledged=True, dispatched=dispatched)


@router.post("/background/timeout", response_model=BackgroundTimeoutResponse)
def background_timeout(
    request: BackgroundTimeoutRequest,
    engine: SyncEngine = Depends(get_engine),
):
    """Acknowledge a host deadline for a background slot."""
    engine.handle_background_timeout(request.task_id)
    return BackgroundTimeoutResponse(task_id=request.task_id, acknowledged=True)


@router.post("/preload", response_model=PreloadResponse)
def preload(
    request: PreloadRequest = PreloadRequest(),
    engine: SyncEngine = Depends(get_engine),
):
    """Fill the missing dates of the cache window, nearest to today first."""
    stats = engine.preload_window(batch_size=request.batch_size)
    return PreloadResponse(**stats)


@router.post("/pause", response_model=ControlResponse)
def pause_sync(engine: SyncEngine = Depends(get_engine)):
    """Suspend automatic triggers. Manual sync keeps working."""
    try:
        engine.pause()
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ControlResponse(
        success=True,
        message="Automatic sync paused",
        sync_status=engine.scheduler.sync_status.value,
    )


@router.post("/resume", response_model=ControlResponse)
def resume_sync(engine: SyncEngine = Depends(get_engine)):
    """Re-arm automatic triggers."""
    try:
        engine.resume()
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ControlResponse(
        success=True,
        message="Automatic sync resumed",
        sync_status=engine.scheduler.sync_status.value,
    )


@router.get("/status", response_model=SchedulerStatusResponse)
def get_sync_status(engine: SyncEngine = Depends(get_engine)):
    return SchedulerStatusResponse(**engine.get_status())


@router.get("/jobs", response_model=SyncJobListResponse)
def list_sync_jobs(
    limit: int = Query(default=10, ge=1, le=100, description="Maximum jobs to return"),
    engine: SyncEngine = Depends(get_engine),
):
    """Recent sync ledger rows, newest first."""
    jobs = [SyncJobResponse(**job.to_dict()) for job in engine.get_recent_sync_jobs(limit)]
    return SyncJobListResponse(jobs=jobs, total=len(jobs))


@router.get("/metrics", response_model=PerformanceMetricsResponse)
def get_metrics(
    days: int = Query(default=7, ge=1, le=365, description="Window in days"),
    engine: SyncEngine = Depends(get_engine),
):
    return PerformanceMetricsResponse(**engine.get_performance_metrics(window_days=days))


@router.get("/stats", response_model=SyncStatsResponse)
def get_sync_stats(engine: SyncEngine = Depends(get_engine)):
    """Cache stats merged with scheduler state, connectivity and last error."""
    return SyncStatsResponse(**engine.get_sync_stats())
