"""
Sync Scheduler - trigger policy and lifecycle of the sync engine.

States: UNINITIALIZED -> INITIALIZING -> ACTIVE -> STOPPED (terminal)

Triggers armed while ACTIVE:

| Trigger    | Cadence                         | Guard                                     |
|------------|---------------------------------|-------------------------------------------|
| primary    | cron, 00:01 local               | none; failure schedules one retry         |
| backup     | cron, 00:05 local               | skip if a success exists within 24h       |
| fallback   | every 60 min                    | act only after 01:00 and with no success  |
| background | host-granted slot               | 00:00-02:59 window or stale data; always  |
|            |                                 | acknowledged to the host                  |
| reconnect  | offline/unknown -> online       | skip if a success exists within 24h       |
| manual     | on demand                       | none; raises on failure; date must be     |
|            |                                 | inside the cache window                   |
| maintenance| every 12 h                      | trims the window; preloads gaps if online |

Every trigger reconciles the invocation date and the read-ahead day(s)
and records one aggregate SyncJob for the invocation date.

Cron/interval/date firing is delegated to an APScheduler BackgroundScheduler.

stop() lets in-flight reconciliation finish: it waits for APScheduler jobs,
for manual and background runs on caller threads, and for coordinator
passes started outside the scheduler, before closing the status channel.
"""

import logging
import threading
import time as time_module
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .background import BackgroundCapability
from .broadcaster import StatusBroadcaster
from .cache_store import LAST_SYNC_TIME_KEY, CacheStore
from .connectivity import ConnectivityMonitor
from .coordinator import SyncCoordinator
from .entities import (
    Clock,
    ConnectivityStatus,
    ReconcileResult,
    SyncJob,
    SyncJobStatus,
    SyncStatus,
    now_iso,
)
from .errors import (
    GuardSkip,
    InitializationError,
    InvalidStateError,
    OutOfWindowError,
    PersistenceError,
    SyncEngineError,
)
from .maintenance import CacheMaintenance
from .retry_controller import RETRY_JOB_ID, RetryController


logger = logging.getLogger(__name__)


DAILY_SYNC_PURPOSE = "automated_daily_sync"
MANUAL_SYNC_PURPOSE = "manual_sync"

PRIMARY_JOB_ID = "primary-daily-sync"
BACKUP_JOB_ID = "backup-daily-sync"
FALLBACK_JOB_ID = "fallback-sweep"
RECONNECT_JOB_ID = "reconnect-catch-up"
MAINTENANCE_JOB_ID = "cache-maintenance"

TRIGGER_LABELS = {
    "primary": "Daily sync",
    "backup": "Backup sync",
    "fallback": "Missed sync",
    "retry": "Daily sync retry",
    "background": "Background sync",
    "reconnect": "Reconnect sync",
    "manual": "Manual sync",
}


class SchedulerState(str, Enum):
    """Scheduler lifecycle states."""

    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZING = "INITIALIZING"
    ACTIVE = "ACTIVE"
    STOPPED = "STOPPED"


@dataclass
class SchedulerConfig:
    """Trigger timings and guard thresholds."""

    primary_time: time = time(0, 1)
    backup_time: time = time(0, 5)
    fallback_interval: timedelta = field(default_factory=lambda: timedelta(minutes=60))
    fallback_cutoff_hour: int = 1
    recent_success_window: timedelta = field(default_factory=lambda: timedelta(hours=24))
    retry_delay: timedelta = field(default_factory=lambda: timedelta(minutes=30))
    background_window_start_hour: int = 0
    background_window_end_hour: int = 2
    stale_after: timedelta = field(default_factory=lambda: timedelta(hours=25))
    background_min_interval: timedelta = field(default_factory=lambda: timedelta(minutes=15))
    read_ahead_days: int = 1
    maintenance_interval: timedelta = field(default_factory=lambda: timedelta(hours=12))


class SyncScheduler:
    """
    Owns the trigger policy, the retry/guard rules and the engine lifecycle.

    Automated triggers never raise to their caller: failures end up as a
    FAILED aggregate job plus an `error` event. Guard skips are logged at
    INFO and broadcast as `skipped`.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        cache: CacheStore,
        broadcaster: StatusBroadcaster,
        connectivity: ConnectivityMonitor,
        background: BackgroundCapability,
        config: Optional[SchedulerConfig] = None,
        maintenance: Optional[CacheMaintenance] = None,
        job_scheduler: Optional[BaseScheduler] = None,
        autostart: bool = True,
        clock: Clock = datetime.now,
        timer: Callable[[], float] = time_module.monotonic,
    ):
        """
        Args:
            coordinator: Runs reconciliation passes
            cache: Ledger queries for guards and staleness
            broadcaster: Status event channel (closed on stop)
            connectivity: Source of reconnect transitions
            background: Platform capability selected at startup
            config: Trigger timings (defaults match production)
            maintenance: Cache window owner; when set, the maintenance job is
                armed and manual dates are checked against the window
            job_scheduler: APScheduler instance (a BackgroundScheduler by default)
            autostart: Start job_scheduler on initialize(); tests keep it off
                and call handlers directly
            clock: Source of local "now"
            timer: Monotonic timer used for duration_seconds
        """
        self.coordinator = coordinator
        self.cache = cache
        self.broadcaster = broadcaster
        self.connectivity = connectivity
        self.background = background
        self.config = config or SchedulerConfig()
        self.maintenance = maintenance
        self.job_scheduler = job_scheduler or BackgroundScheduler()
        self.retry_controller = RetryController(self.job_scheduler, self.config.retry_delay)
        self._autostart = autostart
        self._clock = clock
        self._timer = timer

        self._state = SchedulerState.UNINITIALIZED
        self._state_lock = threading.Lock()

        self._activity_lock = threading.Condition()
        self._active_runs = 0
        self._sync_status = SyncStatus.IDLE
        self._paused = False
        self._last_error: Optional[str] = None

        self._has_fallback_timer = False
        self._background_error: Optional[str] = None
        self._connectivity_subscription = None
        self._last_connectivity = ConnectivityStatus.UNKNOWN

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == SchedulerState.ACTIVE

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def sync_status(self) -> SyncStatus:
        return self._sync_status

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def initialize(self) -> None:
        """
        Arm all triggers and become ACTIVE.

        The platform background slot is optional: if it cannot be
        configured the scheduler runs without it.

        Raises:
            InvalidStateError: If not UNINITIALIZED
            InitializationError: If the cron/interval triggers cannot be armed
                (the scheduler returns to UNINITIALIZED)
        """
        with self._state_lock:
            if self._state != SchedulerState.UNINITIALIZED:
                raise InvalidStateError("initialize", self._state.value)
            self._state = SchedulerState.INITIALIZING

        logger.info("Initializing sync scheduler...")

        try:
            self.background.configure(
                self.run_background_slot,
                self.on_background_timeout,
                self.config.background_min_interval,
            )
            self._background_error = None
        except Exception as e:
            self._background_error = str(e)
            logger.warning(f"Background slot unavailable, continuing without it: {e}")

        try:
            self._arm_core_triggers()
            if self._autostart and not self.job_scheduler.running:
                self.job_scheduler.start()
        except Exception as e:
            logger.error(f"Failed to arm sync triggers: {e}")
            self._disarm_core_triggers()
            self.background.stop()
            with self._state_lock:
                self._state = SchedulerState.UNINITIALIZED
            raise InitializationError(f"Failed to arm sync triggers: {e}") from e

        self._last_connectivity = self.connectivity.current_status()
        self._connectivity_subscription = self.connectivity.status_stream(
            self._on_connectivity_change
        )

        with self._state_lock:
            self._state = SchedulerState.ACTIVE

        logger.info(
            f"Sync scheduler active (platform={self.background.platform}, "
            f"background_slot={self.background.available})"
        )
        self.broadcaster.emit("initialized", "Sync scheduler initialized", scope="scheduler")

    def _arm_core_triggers(self) -> None:
        cfg = self.config
        self.job_scheduler.add_job(
            self.run_primary_sync,
            trigger=CronTrigger(hour=cfg.primary_time.hour, minute=cfg.primary_time.minute),
            id=PRIMARY_JOB_ID,
            name="Primary daily sync",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )
        self.job_scheduler.add_job(
            self.run_backup_sync,
            trigger=CronTrigger(hour=cfg.backup_time.hour, minute=cfg.backup_time.minute),
            id=BACKUP_JOB_ID,
            name="Backup daily sync",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )
        self.job_scheduler.add_job(
            self.run_fallback_sweep,
            trigger=IntervalTrigger(seconds=int(cfg.fallback_interval.total_seconds())),
            id=FALLBACK_JOB_ID,
            name="Missed sync sweep",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._has_fallback_timer = True
        if self.maintenance is not None:
            self.job_scheduler.add_job(
                self.run_maintenance,
                trigger=IntervalTrigger(seconds=int(cfg.maintenance_interval.total_seconds())),
                id=MAINTENANCE_JOB_ID,
                name="Cache window maintenance",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
        logger.info(
            f"Triggers armed: primary {cfg.primary_time.strftime('%H:%M')}, "
            f"backup {cfg.backup_time.strftime('%H:%M')}, "
            f"fallback every {int(cfg.fallback_interval.total_seconds() // 60)} min"
        )

    def _disarm_core_triggers(self) -> None:
        for job_id in (PRIMARY_JOB_ID, BACKUP_JOB_ID, FALLBACK_JOB_ID, MAINTENANCE_JOB_ID):
            try:
                self.job_scheduler.remove_job(job_id)
            except JobLookupError:
                pass
        self._has_fallback_timer = False

    def stop(self) -> None:
        """
        Stop the scheduler. Idempotent.

        Cancels the pending retry and future firings, waits for in-flight
        reconciliation, releases the background slot and closes the
        status channel. New manual syncs are rejected from the moment
        the state is STOPPED.
        """
        with self._activity_lock:
            with self._state_lock:
                if self._state == SchedulerState.STOPPED:
                    return
                self._state = SchedulerState.STOPPED

        logger.info("Stopping sync scheduler...")
        self.retry_controller.cancel()
        if self.maintenance is not None:
            self.maintenance.stop()

        if self.job_scheduler.running:
            self.job_scheduler.shutdown(wait=True)
        else:
            self.job_scheduler.remove_all_jobs()
        self._has_fallback_timer = False

        with self._activity_lock:
            if self._active_runs:
                logger.info(f"Waiting for {self._active_runs} in-flight sync run(s)")
            self._activity_lock.wait_for(lambda: self._active_runs == 0)
        self.coordinator.shutdown()

        self.background.stop()

        if self._connectivity_subscription is not None:
            self._connectivity_subscription.unsubscribe()
            self._connectivity_subscription = None

        self.broadcaster.emit("stopped", "Sync scheduler stopped", scope="scheduler")
        self.broadcaster.close()
        logger.info("Sync scheduler stopped")

    # =========================================================================
    # Pause / Resume
    # =========================================================================

    def _armed_job_ids(self) -> list[str]:
        job_ids = [PRIMARY_JOB_ID, BACKUP_JOB_ID, FALLBACK_JOB_ID, MAINTENANCE_JOB_ID, RETRY_JOB_ID]
        return [job_id for job_id in job_ids if self.job_scheduler.get_job(job_id)]

    def pause(self) -> None:
        """Suspend automated triggers. Manual sync keeps working."""
        if self._state != SchedulerState.ACTIVE:
            raise InvalidStateError("pause", self._state.value)
        if self._paused:
            return

        for job_id in self._armed_job_ids():
            self.job_scheduler.pause_job(job_id)

        with self._activity_lock:
            self._paused = True
            if self._active_runs == 0:
                self._sync_status = SyncStatus.PAUSED

        logger.info("Sync scheduler paused")
        self.broadcaster.emit("paused", "Automatic sync paused", scope="scheduler")

    def resume(self) -> None:
        if self._state != SchedulerState.ACTIVE:
            raise InvalidStateError("resume", self._state.value)
        if not self._paused:
            return

        for job_id in self._armed_job_ids():
            self.job_scheduler.resume_job(job_id)

        with self._activity_lock:
            self._paused = False
            if self._active_runs == 0:
                self._sync_status = SyncStatus.IDLE

        logger.info("Sync scheduler resumed")
        self.broadcaster.emit("resumed", "Automatic sync resumed", scope="scheduler")

    # =========================================================================
    # Guards
    # =========================================================================

    def _require_no_recent_success(self, trigger: str) -> None:
        if self.cache.recent_successful_sync(self.config.recent_success_window):
            hours = int(self.config.recent_success_window.total_seconds() // 3600)
            raise GuardSkip(trigger, f"successful sync within the last {hours}h")

    def _fallback_guard(self, trigger: str) -> None:
        cutoff = self.config.fallback_cutoff_hour
        if self._clock().hour < cutoff:
            raise GuardSkip(trigger, f"before {cutoff:02d}:00 cutoff")
        self._require_no_recent_success(trigger)

    def _background_guard(self, trigger: str) -> None:
        hour = self._clock().hour
        cfg = self.config
        if cfg.background_window_start_hour <= hour <= cfg.background_window_end_hour:
            return
        if self.is_data_stale():
            return
        raise GuardSkip(trigger, "outside sync window and cached data is fresh")

    def is_data_stale(self) -> bool:
        """True if no success completed within `stale_after`."""
        last_success = self.cache.last_successful_sync()
        if last_success is None:
            return True
        return self._clock() - datetime.fromisoformat(last_success) > self.config.stale_after

    # =========================================================================
    # Triggers
    # =========================================================================

    def run_primary_sync(self) -> Optional[SyncJob]:
        """Primary daily trigger. Always runs; a failure schedules one retry."""
        return self._run_trigger("primary", None, allow_retry=True)

    def run_backup_sync(self) -> Optional[SyncJob]:
        return self._run_trigger("backup", self._require_no_recent_success)

    def run_fallback_sweep(self) -> Optional[SyncJob]:
        return self._run_trigger("fallback", self._fallback_guard)

    def run_primary_retry(self, invocation_date: date) -> Optional[SyncJob]:
        """The single retry of a failed primary sync, for the original date."""
        return self._run_trigger("retry", None, invocation_date=invocation_date)

    def run_reconnect_sync(self) -> Optional[SyncJob]:
        return self._run_trigger("reconnect", self._require_no_recent_success)

    def run_background_slot(self, task_id: str) -> Optional[SyncJob]:
        """
        Host-granted background slot.

        The slot is acknowledged to the host in every case, including
        skips, failures and unexpected errors.
        """
        logger.info(f"Background slot {task_id} started")
        try:
            return self._run_trigger("background", self._background_guard)
        except Exception:
            logger.exception(f"Background slot {task_id} failed unexpectedly")
            return None
        finally:
            self.background.finish(task_id)

    def run_maintenance(self) -> Optional[dict]:
        """
        Periodic cache window maintenance.

        Returns:
            Maintenance stats, or None if skipped or failed
        """
        if self._state != SchedulerState.ACTIVE or self.maintenance is None:
            return None
        if self._paused:
            logger.info("Cache maintenance skipped: automatic sync paused")
            return None
        try:
            return self.maintenance.run()
        except SyncEngineError as e:
            logger.error(f"Cache maintenance failed: {e}")
            return None

    def on_background_timeout(self, task_id: str) -> None:
        logger.warning(f"Background slot {task_id} reached host deadline, acknowledging")
        self.background.finish(task_id)

    def _on_connectivity_change(self, status: ConnectivityStatus) -> None:
        previous = self._last_connectivity
        self._last_connectivity = status

        if status != ConnectivityStatus.ONLINE or previous == ConnectivityStatus.ONLINE:
            return
        if not self.is_active or self._paused:
            return

        logger.info(f"Connectivity restored ({previous.value} -> online), scheduling catch-up")
        self.job_scheduler.add_job(
            self.run_reconnect_sync,
            trigger=DateTrigger(),
            id=RECONNECT_JOB_ID,
            name="Reconnect catch-up sync",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=None,
        )

    def _run_trigger(
        self,
        trigger: str,
        guard: Optional[Callable[[str], None]],
        invocation_date: Optional[date] = None,
        allow_retry: bool = False,
    ) -> Optional[SyncJob]:
        """
        Run an automated trigger.

        Returns:
            The aggregate SyncJob, or None if the trigger was skipped
        """
        if self._state != SchedulerState.ACTIVE:
            logger.debug(f"{trigger} trigger ignored, scheduler is {self._state.value}")
            return None

        try:
            if self._paused:
                raise GuardSkip(trigger, "automatic sync paused")
            if guard is not None:
                guard(trigger)
        except GuardSkip as skip:
            logger.info(str(skip))
            self.broadcaster.emit("skipped", str(skip), scope=trigger)
            return None

        invocation_date = invocation_date or self._clock().date()
        job = SyncJob.create(DAILY_SYNC_PURPOSE, invocation_date, self._clock)
        try:
            self._execute(trigger, job)
        except SyncEngineError:
            if allow_retry and self._state == SchedulerState.ACTIVE:
                self.retry_controller.schedule(self.run_primary_retry, args=(invocation_date,))
        return job

    def trigger_manual_sync(self, target_date: Optional[date] = None) -> ReconcileResult:
        """
        Manual trigger. No guard; runs even while paused.

        Args:
            target_date: Invocation date (today if omitted); the read-ahead
                day(s) after it are reconciled as well

        Returns:
            Aggregated created/updated counts

        Works before initialize() (one-shot CLI use); only STOPPED rejects it.

        Raises:
            InvalidStateError: After stop()
            OutOfWindowError: If target_date is outside the cache window
            SyncEngineError: If any reconciliation failed
        """
        if self._state == SchedulerState.STOPPED:
            raise InvalidStateError("run a manual sync", self._state.value)

        invocation_date = target_date or self._clock().date()
        if self.maintenance is not None and not self.maintenance.in_window(invocation_date):
            start, end = self.maintenance.window()
            raise OutOfWindowError(invocation_date, start, end)

        job = SyncJob.create(MANUAL_SYNC_PURPOSE, invocation_date, self._clock)
        return self._execute("manual", job)

    # =========================================================================
    # Execution
    # =========================================================================

    def _execute(self, trigger: str, job: SyncJob) -> ReconcileResult:
        """
        Reconcile the job's date window and finalize the aggregate job in place.

        Raises:
            InvalidStateError: If the scheduler stopped before the run began
            SyncEngineError: After the job was recorded FAILED and `error` emitted
        """
        label = TRIGGER_LABELS.get(trigger, trigger)
        invocation_date = job.target_date
        started = self._timer()

        self._begin_activity(trigger)
        logger.info(f"{label} started for {invocation_date.isoformat()}")
        self.broadcaster.emit(
            "running",
            f"{label} started",
            scope=trigger,
            target_date=invocation_date,
        )

        try:
            self.cache.record_sync_job(job)
            result = self._reconcile_dates(invocation_date)

            job.status = SyncJobStatus.SUCCESS
            job.completed_at = now_iso(self._clock)
            job.records_created = result.readings_created
            job.records_updated = result.readings_updated
            job.records_processed = result.records_processed
            job.duration_seconds = round(self._timer() - started, 3)
            self.cache.record_sync_job(job)
        except SyncEngineError as e:
            self._finalize_failed(trigger, job, e, started)
            raise
        except Exception as e:
            logger.exception(f"{label} hit an unexpected error")
            error = SyncEngineError(f"{label} failed: {type(e).__name__}: {e}")
            self._finalize_failed(trigger, job, error, started)
            raise error from e

        try:
            self.cache.set_metadata(LAST_SYNC_TIME_KEY, job.completed_at)
        except PersistenceError as e:
            logger.warning(f"Could not update {LAST_SYNC_TIME_KEY}: {e}")

        self._end_activity(SyncStatus.SUCCESS)
        logger.info(
            f"{label} completed: {result.readings_created} created, "
            f"{result.readings_updated} updated"
        )
        self.broadcaster.emit(
            "completed",
            f"{label} completed: {result.readings_created} created, "
            f"{result.readings_updated} updated",
            scope=trigger,
            target_date=invocation_date,
        )
        return result

    def _finalize_failed(
        self,
        trigger: str,
        job: SyncJob,
        error: SyncEngineError,
        started: float,
    ) -> None:
        """Record the aggregate job FAILED, end the run and emit `error`."""
        label = TRIGGER_LABELS.get(trigger, trigger)
        job.status = SyncJobStatus.FAILED
        job.completed_at = now_iso(self._clock)
        job.error_message = str(error)
        job.duration_seconds = round(self._timer() - started, 3)
        try:
            self.cache.record_sync_job(job)
        except PersistenceError as pe:
            logger.error(f"Could not record failed job {job.job_name}: {pe}")

        self._end_activity(SyncStatus.ERROR, str(error))
        logger.error(f"{label} failed for {job.target_date.isoformat()}: {error}")
        self.broadcaster.emit(
            "error",
            f"{label} failed",
            scope=trigger,
            target_date=job.target_date,
        )

    def _reconcile_dates(self, invocation_date: date) -> ReconcileResult:
        """
        Reconcile the invocation date and read-ahead days; every date is attempted.

        Read-ahead days outside the cache window are skipped.
        """
        total = ReconcileResult()
        errors: list[SyncEngineError] = []

        for offset in range(self.config.read_ahead_days + 1):
            target = invocation_date + timedelta(days=offset)
            if offset and self.maintenance is not None and not self.maintenance.in_window(target):
                logger.debug(f"Read-ahead {target.isoformat()} is outside the cache window")
                continue
            try:
                total = total + self.coordinator.reconcile(target)
            except SyncEngineError as e:
                errors.append(e)

        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise SyncEngineError("; ".join(str(e) for e in errors))
        return total

    def _begin_activity(self, trigger: str) -> None:
        with self._activity_lock:
            # Checked under the activity lock so stop() cannot miss this run
            if self._state == SchedulerState.STOPPED:
                raise InvalidStateError(f"start a {trigger} sync", self._state.value)
            self._active_runs += 1
            self._sync_status = SyncStatus.SYNCING

    def _end_activity(self, outcome: SyncStatus, error: Optional[str] = None) -> None:
        with self._activity_lock:
            self._active_runs = max(self._active_runs - 1, 0)
            self._last_error = error if outcome == SyncStatus.ERROR else None
            if self._active_runs == 0:
                self._sync_status = SyncStatus.PAUSED if self._paused else outcome
            self._activity_lock.notify_all()

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> dict:
        """
        Scheduler status snapshot.

        Returns:
            initialized, active, platform, has_fallback_timer,
            background_slot_available, plus state, sync_status, paused,
            pending_retry and background_error
        """
        return {
            "initialized": self._state in (SchedulerState.ACTIVE, SchedulerState.STOPPED),
            "active": self._state == SchedulerState.ACTIVE,
            "platform": self.background.platform,
            "has_fallback_timer": self._has_fallback_timer,
            "background_slot_available": self.background.available,
            "state": self._state.value,
            "sync_status": self._sync_status.value,
            "paused": self._paused,
            "pending_retry": self.retry_controller.pending,
            "background_error": self._background_error,
        }
