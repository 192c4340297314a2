"""
Sync API schemas.

Request/response models for /sync/* and /cache/* endpoints.
"""

from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field


# =============================================================================
# Triggers
# =============================================================================


class ManualSyncRequest(BaseModel):
    """Request to run a manual sync."""

    target_date: Optional[date] = Field(
        default=None,
        description="Invocation date (YYYY-MM-DD). Defaults to today; read-ahead days are included"
    )


class ManualSyncResponse(BaseModel):
    """Aggregated outcome of a manual sync."""

    target_date: date = Field(..., description="Invocation date")
    readings_created: int = Field(default=0, description="Readings inserted")
    readings_updated: int = Field(default=0, description="Readings whose content changed")


class BackgroundSlotRequest(BaseModel):
    """Host-granted background execution slot."""

    task_id: Optional[str] = Field(
        default=None,
        description="Host task identifier (generated if omitted)"
    )


class BackgroundSlotResponse(BaseModel):
    """Background slot outcome. The slot is always acknowledged."""

    task_id: str
    acknowledged: bool = True
    dispatched: bool = Field(
        default=False,
        description="Whether the slot was handed to the scheduler"
    )


class BackgroundTimeoutRequest(BaseModel):
    """Host deadline signal for a background slot."""

    task_id: str = Field(..., min_length=1, description="Host task identifier")


class BackgroundTimeoutResponse(BaseModel):
    task_id: str
    acknowledged: bool = True


class PreloadRequest(BaseModel):
    batch_size: int = Field(default=5, ge=1, le=50, description="Dates per batch")


class PreloadResponse(BaseModel):
    """Outcome of a window preload."""

    requested: int = Field(..., description="Missing dates found in the window")
    synced: int = 0
    failed: int = 0
    skipped_offline: int = Field(default=0, description="Dates left when connectivity dropped")
    trimmed_days: int = 0


class ControlResponse(BaseModel):
    """Response from pause/resume."""

    success: bool
    message: str
    sync_status: str


# =============================================================================
# Status
# =============================================================================


class SchedulerStatusResponse(BaseModel):
    """Scheduler status snapshot."""

    initialized: bool
    active: bool
    platform: str = Field(..., description="mobile or web")
    has_fallback_timer: bool
    background_slot_available: bool
    state: str = Field(..., description="UNINITIALIZED/INITIALIZING/ACTIVE/STOPPED")
    sync_status: str = Field(..., description="idle/syncing/success/error/paused")
    paused: bool
    pending_retry: bool
    background_error: Optional[str] = None


class SyncJobResponse(BaseModel):
    """One sync ledger row."""

    job_name: str
    target_date: date
    status: str = Field(..., description="pending/running/success/failed")
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    duration_seconds: Optional[float] = None
    created_at: Optional[str] = None


class SyncJobListResponse(BaseModel):
    jobs: List[SyncJobResponse] = Field(default_factory=list)
    total: int = Field(..., description="Number of jobs returned")


class PerformanceMetricsResponse(BaseModel):
    """Ledger aggregates over a window of days."""

    window_days: int
    total_jobs: int
    success_rate: float = Field(..., ge=0.0, le=1.0)
    failure_count: int
    average_duration_seconds: float
    last_successful_sync: Optional[str] = None


class ConnectivityInfo(BaseModel):
    status: str
    message: str
    is_initialized: bool
    last_online_time: Optional[str] = None
    offline_duration_minutes: int = 0


class CacheStatsResponse(BaseModel):
    cached_days: int
    cached_readings: int
    approximate_size_mb: float
    last_sync_time: Optional[str] = None


class SyncStatsResponse(CacheStatsResponse):
    """Cache stats merged with scheduler and connectivity state."""

    sync_status: str
    last_error: Optional[str] = None
    is_data_stale: bool
    connectivity: ConnectivityInfo
    scheduler: SchedulerStatusResponse


class TrimResponse(BaseModel):
    removed_days: int = Field(..., description="Days deleted outside the cache window")
