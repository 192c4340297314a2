"""
Sync Engine Test Fixtures.

Base fixtures:
  - Empty cache database
  - Mocked clock at fixed time
  - In-memory remote source
  - APScheduler instance that is never started; tests invoke trigger
    handlers directly and inspect the jobs it would have fired

Per-test fixtures:
  - Successful ledger rows for guard tests
  - Recorded status events for ordering tests
"""

from datetime import date, timedelta
from typing import Callable

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from lectio_sync.engine import (
    CacheStore,
    ConnectivityMonitor,
    StatusBroadcaster,
    Subscription,
    SyncCoordinator,
    SyncEngine,
    SyncJob,
    SyncJobStatus,
    SyncScheduler,
    WithBackgroundSlot,
)
from lectio_sync.engine.entities import job_name_for, to_iso
from lectio_sync.engine.scheduler import DAILY_SYNC_PURPOSE, SchedulerConfig
from lectio_sync.infra.settings import Settings


class FixedTimer:
    """Monotonic timer that advances a fixed step per call."""

    def __init__(self, step: float = 0.5):
        self._value = 0.0
        self._step = step

    def __call__(self) -> float:
        self._value += self._step
        return self._value


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def cache(temp_db_path: str, mock_clock) -> CacheStore:
    """Create a fresh CacheStore with empty database."""
    return CacheStore(temp_db_path, clock=mock_clock.now)


@pytest.fixture
def broadcaster(mock_clock) -> StatusBroadcaster:
    return StatusBroadcaster(clock=mock_clock.now)


@pytest.fixture
def events(broadcaster: StatusBroadcaster) -> Subscription:
    """Queue subscription connected before anything is emitted."""
    return broadcaster.subscribe()


@pytest.fixture
def coordinator(cache, fake_remote, broadcaster, mock_clock) -> SyncCoordinator:
    return SyncCoordinator(
        cache,
        fake_remote,
        broadcaster,
        clock=mock_clock.now,
        timer=FixedTimer(),
    )


@pytest.fixture
def connectivity(mock_clock) -> ConnectivityMonitor:
    """Host-driven monitor (no probe thread)."""
    return ConnectivityMonitor(probe=None, clock=mock_clock.now)


@pytest.fixture
def background(mock_clock) -> WithBackgroundSlot:
    return WithBackgroundSlot(clock=mock_clock.now)


@pytest.fixture
def job_scheduler():
    """APScheduler instance that is never started."""
    scheduler = BackgroundScheduler()
    yield scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


@pytest.fixture
def scheduler(
    coordinator,
    cache,
    broadcaster,
    connectivity,
    background,
    job_scheduler,
    mock_clock,
) -> SyncScheduler:
    """SyncScheduler wired to test doubles; call initialize() to activate."""
    return SyncScheduler(
        coordinator=coordinator,
        cache=cache,
        broadcaster=broadcaster,
        connectivity=connectivity,
        background=background,
        config=SchedulerConfig(),
        job_scheduler=job_scheduler,
        autostart=False,
        clock=mock_clock.now,
        timer=FixedTimer(),
    )


@pytest.fixture
def active_scheduler(scheduler: SyncScheduler) -> SyncScheduler:
    scheduler.initialize()
    return scheduler


@pytest.fixture
def engine_settings(temp_db_path: str, tmp_path) -> Settings:
    return Settings(
        db_path=temp_db_path,
        connectivity_enabled=False,
        cache_days_before=2,
        cache_days_after=2,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def engine(engine_settings, fake_remote, job_scheduler, mock_clock) -> SyncEngine:
    """SyncEngine with a five-day cache window around FIXED_DATETIME."""
    sync_engine = SyncEngine.create(
        engine_settings,
        remote_source=fake_remote,
        job_scheduler=job_scheduler,
        autostart=False,
        clock=mock_clock.now,
    )
    yield sync_engine
    sync_engine.stop()


# =============================================================================
# Ledger Factory Fixtures
# =============================================================================


@pytest.fixture
def record_success(cache: CacheStore, mock_clock) -> Callable:
    """
    Factory fixture for SUCCESS ledger rows.

    Returns a function that records a daily-sync success completed
    `hours_ago` hours before the mock clock.
    """

    def _record(hours_ago: float = 1, target_date: date = None) -> SyncJob:
        target_date = target_date or mock_clock.today()
        completed = mock_clock.now() - timedelta(hours=hours_ago)
        job = SyncJob(
            job_name=job_name_for(DAILY_SYNC_PURPOSE, target_date),
            target_date=target_date,
            status=SyncJobStatus.SUCCESS,
            started_at=to_iso(completed - timedelta(seconds=2)),
            completed_at=to_iso(completed),
            records_processed=4,
            records_created=4,
            duration_seconds=2.0,
        )
        return cache.record_sync_job(job)

    return _record


# =============================================================================
# Assertion Helpers
# =============================================================================


def statuses(subscription: Subscription) -> list[str]:
    """Drain a queue subscription and return the event statuses in order."""
    return [event.status for event in subscription.drain()]


def assert_job_status(cache: CacheStore, job_name: str, target_date: date, expected):
    """Assert a ledger row has the expected status."""
    job = cache.get_sync_job(job_name, target_date)
    assert job is not None, f"Job {job_name} not found"
    assert job.status == expected, f"Expected {expected}, got {job.status}"
