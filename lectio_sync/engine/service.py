"""
Sync Engine - main entry point of the offline-first sync core.

This service wires all engine components:
- CacheStore (local cache + sync ledger)
- RemoteSource (canonical store)
- ConnectivityMonitor (reachability)
- StatusBroadcaster (lifecycle events)
- SyncCoordinator (reconciliation passes)
- SyncScheduler (triggers, guards, retry)
- CacheMaintenance (window trimming and preload)
- RecoveryManager (ledger cleanup after a crash)

The engine is constructed once by the application root and handed to its
consumers (HTTP app, CLI); there is no module-level instance.

Usage:
    engine = SyncEngine.create(Settings.from_env())
    engine.start()
    # ... triggers fire in the background ...
    engine.stop()
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from apscheduler.schedulers.base import BaseScheduler

from lectio_sync.infra.settings import Settings

from .background import BackgroundCapability, ForegroundOnly, WithBackgroundSlot
from .broadcaster import StatusBroadcaster, Subscription
from .cache_store import CacheStore
from .connectivity import ConnectivityMonitor, HttpProbe, Probe
from .coordinator import SyncCoordinator
from .entities import (
    Clock,
    ConnectivityStatus,
    LiturgicalDay,
    LiturgicalReading,
    ReconcileResult,
    StatusEvent,
    SyncJob,
)
from .errors import SyncEngineError
from .maintenance import DEFAULT_PRELOAD_BATCH_SIZE, CacheMaintenance
from .recovery import RecoveryManager
from .remote_source import HttpRemoteSource, RemoteSource
from .scheduler import SchedulerConfig, SyncScheduler


logger = logging.getLogger(__name__)

ON_DEMAND_PURPOSE = "on_demand_sync"


def scheduler_config_from_settings(settings: Settings) -> SchedulerConfig:
    return SchedulerConfig(
        primary_time=settings.primary_sync_time,
        backup_time=settings.backup_sync_time,
        fallback_interval=timedelta(minutes=settings.fallback_interval_minutes),
        fallback_cutoff_hour=settings.fallback_cutoff_hour,
        recent_success_window=timedelta(hours=settings.recent_success_hours),
        retry_delay=timedelta(minutes=settings.retry_delay_minutes),
        background_window_end_hour=settings.background_window_end_hour,
        stale_after=timedelta(hours=settings.stale_after_hours),
        background_min_interval=timedelta(minutes=settings.background_min_interval_minutes),
        maintenance_interval=timedelta(hours=settings.maintenance_interval_hours),
    )


class SyncEngine:
    """
    Long-lived root object of the sync core.

    Provides:
    - Component wiring
    - Startup with ledger recovery
    - Graceful shutdown
    - The query and trigger surface used by the API and CLI
    """

    def __init__(
        self,
        cache: CacheStore,
        remote: RemoteSource,
        broadcaster: StatusBroadcaster,
        connectivity: ConnectivityMonitor,
        coordinator: SyncCoordinator,
        scheduler: SyncScheduler,
        recovery_manager: RecoveryManager,
        maintenance: CacheMaintenance,
        clock: Clock = datetime.now,
    ):
        """
        Initialize SyncEngine with all components.

        Use SyncEngine.create() for convenient construction.
        """
        self.cache = cache
        self.remote = remote
        self.broadcaster = broadcaster
        self.connectivity = connectivity
        self.coordinator = coordinator
        self.scheduler = scheduler
        self.recovery_manager = recovery_manager
        self.maintenance = maintenance
        self._clock = clock

        self._started = False

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        remote_source: Optional[RemoteSource] = None,
        probe: Optional[Probe] = None,
        background: Optional[BackgroundCapability] = None,
        job_scheduler: Optional[BaseScheduler] = None,
        autostart: bool = True,
        clock: Clock = datetime.now,
    ) -> "SyncEngine":
        """
        Create a SyncEngine with all components wired together.

        Args:
            settings: Runtime settings (read from the environment if omitted)
            remote_source: Override for the HTTP remote (tests)
            probe: Override for the connectivity probe (tests)
            background: Override for the platform capability
            job_scheduler: Override for the APScheduler instance
            autostart: Start the APScheduler instance on start()
            clock: Source of local "now"

        Returns:
            Configured SyncEngine
        """
        settings = settings or Settings.from_env()

        cache = CacheStore(settings.db_path, clock=clock)

        if remote_source is None:
            remote_source = HttpRemoteSource(
                settings.remote_url,
                api_key=settings.remote_api_key,
                timeout=settings.remote_timeout_seconds,
            )

        broadcaster = StatusBroadcaster(clock=clock)

        if probe is None and settings.connectivity_enabled:
            probe = HttpProbe(settings.connectivity_probe_url or settings.remote_url)
        connectivity = ConnectivityMonitor(
            probe=probe,
            interval=settings.connectivity_interval_seconds,
            clock=clock,
        )

        coordinator = SyncCoordinator(cache, remote_source, broadcaster, clock=clock)

        maintenance = CacheMaintenance(
            cache,
            coordinator,
            connectivity,
            days_before=settings.cache_days_before,
            days_after=settings.cache_days_after,
            preload_threshold=settings.preload_threshold_days,
            clock=clock,
        )

        # Capability is chosen once here, never re-checked inline
        if background is None:
            if settings.platform == "web":
                background = ForegroundOnly()
            else:
                background = WithBackgroundSlot(clock=clock)

        scheduler = SyncScheduler(
            coordinator=coordinator,
            cache=cache,
            broadcaster=broadcaster,
            connectivity=connectivity,
            background=background,
            config=scheduler_config_from_settings(settings),
            maintenance=maintenance,
            job_scheduler=job_scheduler,
            autostart=autostart,
            clock=clock,
        )

        recovery_manager = RecoveryManager(cache, clock=clock)

        return cls(
            cache=cache,
            remote=remote_source,
            broadcaster=broadcaster,
            connectivity=connectivity,
            coordinator=coordinator,
            scheduler=scheduler,
            recovery_manager=recovery_manager,
            maintenance=maintenance,
            clock=clock,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, run_recovery: bool = True) -> dict:
        """
        Start the sync engine.

        Args:
            run_recovery: Whether to run ledger recovery first

        Returns:
            Recovery statistics if recovery was run
        """
        if self._started:
            raise RuntimeError("Sync engine already started")

        logger.info("Starting sync engine...")

        recovery_stats = {}
        if run_recovery:
            recovery_stats = self.recovery_manager.recover_on_startup()

        self.scheduler.initialize()
        self.connectivity.start()
        self._started = True

        logger.info("Sync engine started")
        return recovery_stats

    def stop(self) -> None:
        """
        Stop the sync engine gracefully.

        In-flight reconciliation finishes before this returns.
        """
        if not self._started:
            return

        logger.info("Stopping sync engine...")
        self.scheduler.stop()
        self.connectivity.stop()
        self.close()
        self._started = False
        logger.info("Sync engine stopped")

    def close(self) -> None:
        """Release the remote client. Used directly by one-shot commands."""
        close = getattr(self.remote, "close", None)
        if close is not None:
            close()

    @property
    def is_running(self) -> bool:
        return self._started and self.scheduler.is_active

    def today(self) -> date:
        """Local calendar date according to the engine clock."""
        return self._clock().date()

    # =========================================================================
    # Triggers
    # =========================================================================

    def trigger_manual_sync(self, target_date: Optional[date] = None) -> ReconcileResult:
        """Reconcile target_date (default today) plus read-ahead. Raises on failure."""
        return self.scheduler.trigger_manual_sync(target_date)

    def handle_background_slot(self, task_id: str) -> bool:
        """
        Entry point for a host-granted background slot.

        Returns:
            True if the slot was handed to the scheduler; the slot is
            acknowledged either way
        """
        background = self.scheduler.background
        if not isinstance(background, WithBackgroundSlot):
            logger.info(f"Background slot {task_id} ignored on {background.platform} platform")
            return False
        return background.dispatch(task_id)

    def handle_background_timeout(self, task_id: str) -> None:
        background = self.scheduler.background
        if isinstance(background, WithBackgroundSlot):
            background.timeout(task_id)

    def pause(self) -> None:
        self.scheduler.pause()

    def resume(self) -> None:
        self.scheduler.resume()

    # =========================================================================
    # Cache Maintenance
    # =========================================================================

    def trim_cache(self) -> int:
        """Trim the cache to the rolling window around today."""
        return self.maintenance.trim()

    def preload_window(self, batch_size: int = DEFAULT_PRELOAD_BATCH_SIZE) -> dict:
        """
        Fill every missing date of the cache window, nearest to today first.

        Returns:
            requested, synced, failed, skipped_offline, trimmed_days
        """
        return self.maintenance.preload(batch_size=batch_size)

    def read_day(
        self,
        target_date: date,
    ) -> Optional[tuple[LiturgicalDay, list[LiturgicalReading]]]:
        """
        Cache-first read of a day and its readings.

        A miss inside the window triggers an on-demand reconciliation unless
        known to be offline. Dates outside the window are never served.
        """
        if not self.maintenance.in_window(target_date):
            logger.debug(f"{target_date.isoformat()} is outside the cache window")
            return None

        day = self.cache.get_day(target_date)
        if day is None:
            if self.connectivity.current_status() == ConnectivityStatus.OFFLINE:
                return None
            try:
                self.coordinator.reconcile(target_date, purpose=ON_DEMAND_PURPOSE)
            except SyncEngineError as e:
                logger.warning(f"On-demand sync of {target_date.isoformat()} failed: {e}")
                return None
            day = self.cache.get_day(target_date)
            if day is None:
                return None

        return day, self.cache.get_readings(target_date)

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> dict:
        return self.scheduler.get_status()

    def get_recent_sync_jobs(self, limit: int = 10) -> list[SyncJob]:
        """Ledger rows ordered by creation time, newest first."""
        return self.cache.list_recent_sync_jobs(limit)

    def get_performance_metrics(self, window_days: int = 7) -> dict:
        """
        Ledger aggregates over the last `window_days` days.

        Returns:
            total_jobs, success_rate, failure_count,
            average_duration_seconds, last_successful_sync, window_days
        """
        since = self._clock() - timedelta(days=window_days)
        metrics = self.cache.get_performance_metrics(since)
        metrics["window_days"] = window_days
        return metrics

    def get_cache_stats(self) -> dict:
        return self.cache.get_cache_stats()

    def get_sync_stats(self) -> dict:
        stats = dict(self.get_cache_stats())
        stats.update(
            {
                "sync_status": self.scheduler.sync_status.value,
                "last_error": self.scheduler.last_error,
                "is_data_stale": self.scheduler.is_data_stale(),
                "connectivity": self.connectivity.get_info(),
                "scheduler": self.get_status(),
            }
        )
        return stats

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(
        self,
        callback: Optional[Callable[[StatusEvent], None]] = None,
    ) -> Subscription[StatusEvent]:
        """Subscribe to lifecycle events (no replay of past events)."""
        return self.broadcaster.subscribe(callback)

    def unsubscribe(self, subscription: Subscription[StatusEvent]) -> None:
        self.broadcaster.unsubscribe(subscription)
