"""
Sync Coordinator.

One reconciliation pass for one target date:
1. Record a RUNNING ledger row for (job_name(date), date)
2. Fetch the day and readings from the RemoteSource
3. Diff against the cache by reading id and data_hash
4. Write day + changed readings (and drop stale readings) in one transaction
5. Finalize the ledger row SUCCESS, or FAILED with the error message

Concurrent calls for the same date share one pass: the first caller runs
it, later callers wait on the in-flight Future and get the same result or
exception. Only the running caller emits status events.

Every failure leaves the coordinator as a SyncEngineError; anything else
is wrapped in ReconcileError. shutdown() stops new passes and waits for
the running ones to finish.
"""

import logging
import threading
import time
from concurrent.futures import Future
from datetime import date, datetime
from typing import Callable, Optional

from .broadcaster import StatusBroadcaster
from .cache_store import CacheStore
from .entities import (
    Clock,
    ReconcileResult,
    RemoteSnapshot,
    SyncJob,
    SyncJobStatus,
    now_iso,
)
from .errors import (
    FetchError,
    InvalidStateError,
    PersistenceError,
    ReconcileError,
    SyncEngineError,
)
from .remote_source import RemoteSource


logger = logging.getLogger(__name__)

RECONCILE_PURPOSE = "liturgical_sync"


class SyncCoordinator:
    """
    Executes reconciliation passes against the CacheStore.

    Does NOT decide when to run; that is the scheduler's job.
    """

    def __init__(
        self,
        cache: CacheStore,
        remote: RemoteSource,
        broadcaster: StatusBroadcaster,
        clock: Clock = datetime.now,
        timer: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            cache: Local cache and ledger
            remote: Canonical content source
            broadcaster: Channel for running/completed/error events
            clock: Source of "now" for ledger timestamps
            timer: Monotonic timer used for duration_seconds
        """
        self.cache = cache
        self.remote = remote
        self.broadcaster = broadcaster
        self._clock = clock
        self._timer = timer

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight: dict[date, Future] = {}
        self._accepting = True

    def in_flight_dates(self) -> list[date]:
        with self._lock:
            return sorted(self._in_flight)

    @property
    def accepting(self) -> bool:
        return self._accepting

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Refuse new passes and wait for the running ones to finish.

        Args:
            timeout: Seconds to wait (None waits indefinitely)

        Returns:
            True if no pass is running anymore
        """
        with self._idle:
            self._accepting = False
            if self._in_flight:
                logger.info(f"Waiting for {len(self._in_flight)} in-flight reconciliation(s)")
            return self._idle.wait_for(lambda: not self._in_flight, timeout)

    def reconcile(
        self,
        target_date: date,
        purpose: str = RECONCILE_PURPOSE,
    ) -> ReconcileResult:
        """
        Reconcile one date against the remote store.

        Args:
            target_date: Date to fetch and cache
            purpose: Ledger name prefix for this pass

        Returns:
            ReconcileResult with created/updated/removed counts

        Raises:
            FetchError: Remote fetch failed (cache untouched)
            PersistenceError: Cache write failed (nothing committed)
            ReconcileError: Any other failure of the pass
            InvalidStateError: After shutdown()
        """
        with self._lock:
            future = self._in_flight.get(target_date)
            owner = future is None
            if owner:
                if not self._accepting:
                    raise InvalidStateError("start a reconciliation", "STOPPED")
                future = Future()
                self._in_flight[target_date] = future

        if not owner:
            logger.info(f"Joining in-flight reconciliation for {target_date.isoformat()}")
            return future.result()

        try:
            result = self._run(target_date, purpose)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._idle:
                self._in_flight.pop(target_date, None)
                self._idle.notify_all()

    def _run(self, target_date: date, purpose: str) -> ReconcileResult:
        started = self._timer()
        job = SyncJob.create(purpose, target_date, self._clock)
        date_str = target_date.isoformat()

        self.broadcaster.emit(
            "running",
            f"Syncing readings for {date_str}",
            scope=purpose,
            target_date=target_date,
        )

        try:
            self.cache.record_sync_job(job)
            snapshot = self.remote.fetch(target_date)
            if snapshot.day.date != target_date:
                raise FetchError(
                    target_date,
                    f"Remote returned day for {snapshot.day.date.isoformat()}",
                )
            result = self._apply(target_date, snapshot)
            self._finalize_success(job, result, started)
        except Exception as e:
            self._finalize_failed(job, e, started)
            self.broadcaster.emit(
                "error",
                f"Sync failed for {date_str}",
                scope=purpose,
                target_date=target_date,
            )
            if isinstance(e, SyncEngineError):
                raise
            raise ReconcileError(target_date, f"{type(e).__name__}: {e}") from e

        logger.info(
            f"Reconciled {date_str}: {result.readings_created} created, "
            f"{result.readings_updated} updated, {result.readings_removed} removed"
        )
        self.broadcaster.emit(
            "completed",
            f"Synced {date_str}: {result.readings_created} new, "
            f"{result.readings_updated} updated",
            scope=purpose,
            target_date=target_date,
        )
        return result

    def _apply(self, target_date: date, snapshot: RemoteSnapshot) -> ReconcileResult:
        cached_day = self.cache.get_day(target_date)
        if cached_day is not None and cached_day.id == snapshot.day.id:
            cached = {r.id: r for r in self.cache.get_readings(target_date)}
        else:
            # New or re-keyed day: every remote reading is a create
            cached = {}

        created = []
        updated = []
        for reading in snapshot.readings:
            existing = cached.pop(reading.id, None)
            if existing is None:
                created.append(reading)
            elif existing.data_hash != reading.data_hash:
                updated.append(reading)

        removed = self.cache.apply_snapshot(
            snapshot.day,
            created + updated,
            stale_ids=list(cached),
        )
        return ReconcileResult(
            readings_created=len(created),
            readings_updated=len(updated),
            readings_removed=removed,
        )

    def _finalize_failed(self, job: SyncJob, error: Exception, started: float) -> None:
        job.status = SyncJobStatus.FAILED
        job.completed_at = now_iso(self._clock)
        job.error_message = str(error)
        job.duration_seconds = round(self._timer() - started, 3)

        log = logger.warning if isinstance(error, FetchError) else logger.error
        log(f"Reconciliation of {job.target_date.isoformat()} failed: {error}")

        try:
            self.cache.record_sync_job(job)
        except PersistenceError as e:
            logger.error(f"Could not record failed job {job.job_name}: {e}")

    def _finalize_success(self, job: SyncJob, result: ReconcileResult, started: float) -> None:
        job.status = SyncJobStatus.SUCCESS
        job.completed_at = now_iso(self._clock)
        job.error_message = None
        job.records_created = result.readings_created
        job.records_updated = result.readings_updated
        job.records_processed = result.records_processed
        job.duration_seconds = round(self._timer() - started, 3)
        self.cache.record_sync_job(job)
