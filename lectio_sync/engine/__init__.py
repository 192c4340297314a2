"""
Sync Engine Core Module.

Offline-first synchronization of liturgical days and readings:
- CacheStore: local SQLite cache and sync ledger
- SyncCoordinator: one fetch-diff-upsert pass per date
- SyncScheduler: trigger policy, guards, single retry
- CacheMaintenance: rolling window trim and preload
- SyncEngine: wiring and query surface
"""

from .entities import (
    ConnectivityStatus,
    LiturgicalDay,
    LiturgicalReading,
    ReadingType,
    ReconcileResult,
    RemoteSnapshot,
    StatusEvent,
    SyncJob,
    SyncJobStatus,
    SyncStatus,
    job_name_for,
)
from .errors import (
    SyncEngineError,
    InitializationError,
    InvalidStateError,
    FetchError,
    PersistenceError,
    ReconcileError,
    OutOfWindowError,
    GuardSkip,
)
from .cache_store import CacheStore
from .broadcaster import Broadcaster, StatusBroadcaster, Subscription
from .remote_source import RemoteSource, HttpRemoteSource
from .connectivity import ConnectivityMonitor, HttpProbe
from .coordinator import SyncCoordinator
from .retry_controller import RetryController
from .background import BackgroundCapability, ForegroundOnly, WithBackgroundSlot
from .recovery import RecoveryManager
from .maintenance import CacheMaintenance
from .scheduler import SchedulerConfig, SchedulerState, SyncScheduler
from .service import SyncEngine

__all__ = [
    # Entities
    "ConnectivityStatus",
    "LiturgicalDay",
    "LiturgicalReading",
    "ReadingType",
    "ReconcileResult",
    "RemoteSnapshot",
    "StatusEvent",
    "SyncJob",
    "SyncJobStatus",
    "SyncStatus",
    "job_name_for",
    # Errors
    "SyncEngineError",
    "InitializationError",
    "InvalidStateError",
    "FetchError",
    "PersistenceError",
    "ReconcileError",
    "OutOfWindowError",
    "GuardSkip",
    # Components
    "CacheStore",
    "Broadcaster",
    "StatusBroadcaster",
    "Subscription",
    "RemoteSource",
    "HttpRemoteSource",
    "ConnectivityMonitor",
    "HttpProbe",
    "SyncCoordinator",
    "RetryController",
    "BackgroundCapability",
    "ForegroundOnly",
    "WithBackgroundSlot",
    "RecoveryManager",
    "CacheMaintenance",
    "SchedulerConfig",
    "SchedulerState",
    "SyncScheduler",
    "SyncEngine",
]
