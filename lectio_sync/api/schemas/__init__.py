"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .sync import (
    ManualSyncRequest,
    ManualSyncResponse,
    BackgroundSlotRequest,
    BackgroundSlotResponse,
    BackgroundTimeoutRequest,
    BackgroundTimeoutResponse,
    PreloadRequest,
    PreloadResponse,
    ControlResponse,
    SchedulerStatusResponse,
    SyncJobResponse,
    SyncJobListResponse,
    PerformanceMetricsResponse,
    CacheStatsResponse,
    SyncStatsResponse,
    TrimResponse,
)
from .readings import (
    LiturgicalDayResponse,
    LiturgicalReadingResponse,
    DayReadingsResponse,
)

__all__ = [
    "ManualSyncRequest",
    "ManualSyncResponse",
    "BackgroundSlotRequest",
    "BackgroundSlotResponse",
    "BackgroundTimeoutRequest",
    "BackgroundTimeoutResponse",
    "PreloadRequest",
    "PreloadResponse",
    "ControlResponse",
    "SchedulerStatusResponse",
    "SyncJobResponse",
    "SyncJobListResponse",
    "PerformanceMetricsResponse",
    "CacheStatsResponse",
    "SyncStatsResponse",
    "TrimResponse",
    "LiturgicalDayResponse",
    "LiturgicalReadingResponse",
    "DayReadingsResponse",
]
