"""
Pytest configuration and shared fixtures.

Test doubles shared by the engine and API tests:
  - MockClock: fixed local time, advanced explicitly
  - FakeRemoteSource: in-memory remote store with per-date failures
  - build_snapshot: remote day with N readings in liturgical order
"""

import os
import tempfile
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from lectio_sync.engine import (
    FetchError,
    LiturgicalDay,
    LiturgicalReading,
    ReadingType,
    RemoteSnapshot,
    SyncEngine,
)
from lectio_sync.infra.settings import Settings


# Fixed time for deterministic tests: one minute past midnight (primary sync time)
FIXED_DATETIME = datetime(2025, 1, 1, 0, 1, 0)

READING_TYPES = [
    ReadingType.FIRST_READING,
    ReadingType.RESPONSORIAL_PSALM,
    ReadingType.SECOND_READING,
    ReadingType.GOSPEL,
]


@pytest.fixture(autouse=True, scope="function")
def reset_auth_module():
    """
    Reset auth module state before each test.

    This ensures tests run with API_AUTH_ENABLED=false by default,
    unless the test explicitly sets it otherwise.
    """
    # Store original values
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")

    # Set defaults for tests (auth disabled)
    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    # Restore original values
    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]

    # Reload auth module to reset state
    import importlib
    import lectio_sync.api.dependencies.auth as auth_module
    importlib.reload(auth_module)


# =============================================================================
# Test Doubles
# =============================================================================


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at a fixed local time
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def today(self) -> date:
        return self._current.date()

    def tick(self, seconds: int = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set time to specific value."""
        self._current = time


def build_snapshot(
    target_date: date,
    reading_count: int = 4,
    day_id: Optional[str] = None,
    content: str = "In the beginning was the Word",
) -> RemoteSnapshot:
    """Remote snapshot with `reading_count` readings in liturgical order."""
    day_id = day_id or f"day-{target_date.isoformat()}"
    day = LiturgicalDay(
        id=day_id,
        date=target_date,
        liturgical_season="Christmas",
        liturgical_rank="solemnity",
        feast_name="Mary, Mother of God",
        liturgical_color="white",
        week_of_season=1,
        day_of_week=target_date.strftime("%A"),
        is_sunday=target_date.weekday() == 6,
        is_holy_day=True,
    )
    readings = [
        LiturgicalReading(
            id=f"{day_id}-r{n}",
            liturgical_day_id=day_id,
            reading_type=READING_TYPES[(n - 1) % len(READING_TYPES)],
            citation=f"Num 6:{21 + n}-27",
            content=f"{content} ({n})",
            order_sequence=n,
        )
        for n in range(1, reading_count + 1)
    ]
    return RemoteSnapshot(day=day, readings=readings)


class FakeRemoteSource:
    """
    In-memory RemoteSource.

    - snapshots: date -> RemoteSnapshot served by fetch()
    - failures: date -> exception raised by fetch() for that date
    - A date with no snapshot raises FetchError, like the HTTP source
    - gate: optional Event that fetch() waits on (single-flight tests)
    """

    def __init__(self):
        self.snapshots: dict[date, RemoteSnapshot] = {}
        self.failures: dict[date, Exception] = {}
        self.calls: list[date] = []
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def add(self, snapshot: RemoteSnapshot) -> RemoteSnapshot:
        self.snapshots[snapshot.day.date] = snapshot
        return snapshot

    def fail(self, target_date: date, message: str = "Network unreachable") -> None:
        self.failures[target_date] = FetchError(target_date, message)

    def call_count(self, target_date: Optional[date] = None) -> int:
        with self._lock:
            if target_date is None:
                return len(self.calls)
            return self.calls.count(target_date)

    def fetch(self, target_date: date) -> RemoteSnapshot:
        with self._lock:
            self.calls.append(target_date)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)

        if target_date in self.failures:
            raise self.failures[target_date]
        if target_date not in self.snapshots:
            raise FetchError(target_date, "No liturgical day in remote store")
        return self.snapshots[target_date]


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def mock_clock() -> MockClock:
    """Create a mock clock at fixed time."""
    return MockClock()


@pytest.fixture
def fake_remote() -> FakeRemoteSource:
    return FakeRemoteSource()


@pytest.fixture
def make_snapshot() -> Callable[..., RemoteSnapshot]:
    """Factory fixture for remote snapshots."""
    return build_snapshot


@pytest.fixture
def api_engine(temp_db_path, tmp_path, fake_remote, mock_clock) -> Generator[SyncEngine, None, None]:
    """
    Un-started SyncEngine for API tests.

    Five-day cache window around FIXED_DATETIME, no connectivity probe and
    an APScheduler instance that is never started.
    """
    settings = Settings(
        db_path=temp_db_path,
        connectivity_enabled=False,
        cache_days_before=2,
        cache_days_after=2,
        log_dir=tmp_path / "logs",
    )
    job_scheduler = BackgroundScheduler()
    engine = SyncEngine.create(
        settings,
        remote_source=fake_remote,
        job_scheduler=job_scheduler,
        autostart=False,
        clock=mock_clock.now,
    )
    yield engine
    engine.stop()
