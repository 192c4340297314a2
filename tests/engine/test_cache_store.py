"""
Tests for CacheStore.

Covers:
- Idempotent upserts (no duplicate rows, no observable change)
- Reading order and day re-keying
- Atomic window trim and missing-date detection
- Ledger uniqueness on (job_name, target_date)
- PersistenceError translation and transaction rollback
"""

from datetime import date, datetime, timedelta

import pytest

from lectio_sync.engine import (
    CacheStore,
    LiturgicalDay,
    LiturgicalReading,
    PersistenceError,
    ReadingType,
    SyncJob,
    SyncJobStatus,
)
from lectio_sync.engine.entities import to_iso


JAN_1 = date(2025, 1, 1)


def _seed_day(cache: CacheStore, make_snapshot, target_date: date, reading_count: int = 2):
    snapshot = make_snapshot(target_date, reading_count=reading_count)
    cache.upsert_day(snapshot.day)
    cache.upsert_readings(snapshot.readings)
    return snapshot


class TestDayUpsert:
    """upsert_day / get_day."""

    def test_get_missing_day_returns_none(self, cache):
        assert cache.get_day(JAN_1) is None

    def test_upsert_then_get_round_trips_fields(self, cache, make_snapshot):
        day = make_snapshot(JAN_1).day

        assert cache.upsert_day(day) is True

        cached = cache.get_day(JAN_1)
        assert cached.id == day.id
        assert cached.feast_name == "Mary, Mother of God"
        assert cached.is_holy_day is True
        assert cached.cache_timestamp == "2025-01-01T00:01:00"

    def test_identical_upsert_causes_no_change(self, cache, make_snapshot, mock_clock):
        day = make_snapshot(JAN_1).day
        cache.upsert_day(day)

        mock_clock.tick(3600)
        assert cache.upsert_day(day) is False

        # cache_timestamp untouched by the no-op upsert
        assert cache.get_day(JAN_1).cache_timestamp == "2025-01-01T00:01:00"
        assert cache.get_cache_stats()["cached_days"] == 1

    def test_changed_day_is_rewritten(self, cache, make_snapshot, mock_clock):
        day = make_snapshot(JAN_1).day
        cache.upsert_day(day)

        mock_clock.tick(60)
        day.liturgical_color = "gold"
        assert cache.upsert_day(day) is True

        cached = cache.get_day(JAN_1)
        assert cached.liturgical_color == "gold"
        assert cached.cache_timestamp == "2025-01-01T00:02:00"

    def test_rekeyed_day_replaces_old_row_and_readings(self, cache, make_snapshot):
        _seed_day(cache, make_snapshot, JAN_1, reading_count=3)

        new_day = make_snapshot(JAN_1, day_id="day-new").day
        cache.upsert_day(new_day)

        assert cache.get_day(JAN_1).id == "day-new"
        assert cache.get_readings(JAN_1) == []
        assert cache.get_cache_stats()["cached_readings"] == 0


class TestReadingUpsert:
    """upsert_readings / get_readings / delete_readings."""

    def test_readings_ordered_by_sequence(self, cache, make_snapshot):
        snapshot = make_snapshot(JAN_1, reading_count=4)
        cache.upsert_day(snapshot.day)
        cache.upsert_readings(reversed(snapshot.readings))

        readings = cache.get_readings(JAN_1)

        assert [r.order_sequence for r in readings] == [1, 2, 3, 4]
        assert readings[3].reading_type == ReadingType.GOSPEL

    def test_identical_readings_upsert_writes_nothing(self, cache, make_snapshot):
        snapshot = _seed_day(cache, make_snapshot, JAN_1, reading_count=4)

        assert cache.upsert_readings(snapshot.readings) == 0
        assert cache.get_cache_stats()["cached_readings"] == 4

    def test_changed_reading_is_rewritten(self, cache, make_snapshot):
        snapshot = _seed_day(cache, make_snapshot, JAN_1, reading_count=2)
        snapshot.readings[0].content = "Corrected translation"

        assert cache.upsert_readings(snapshot.readings) == 1
        assert cache.get_readings(JAN_1)[0].content == "Corrected translation"

    def test_reading_without_cached_day_raises_persistence_error(self, cache):
        orphan = LiturgicalReading(
            id="orphan",
            liturgical_day_id="missing-day",
            reading_type=ReadingType.GOSPEL,
            citation="Jn 1:1",
            content="In the beginning",
        )

        with pytest.raises(PersistenceError) as exc_info:
            cache.upsert_readings([orphan])

        assert exc_info.value.operation == "upsert_readings"

    def test_delete_readings(self, cache, make_snapshot):
        snapshot = _seed_day(cache, make_snapshot, JAN_1, reading_count=3)

        removed = cache.delete_readings([snapshot.readings[0].id, "unknown"])

        assert removed == 1
        assert len(cache.get_readings(JAN_1)) == 2


class TestApplySnapshot:
    """Single-transaction write of a reconciled day."""

    def test_writes_day_changed_readings_and_removes_stale(self, cache, make_snapshot):
        old = _seed_day(cache, make_snapshot, JAN_1, reading_count=3)
        fresh = make_snapshot(JAN_1, reading_count=2, content="Revised")

        removed = cache.apply_snapshot(
            fresh.day, fresh.readings, stale_ids=[old.readings[2].id]
        )

        assert removed == 1
        readings = cache.get_readings(JAN_1)
        assert [r.content for r in readings] == ["Revised (1)", "Revised (2)"]

    def test_failure_rolls_back_whole_pass(self, cache, make_snapshot):
        snapshot = make_snapshot(JAN_1, reading_count=1)
        bad = LiturgicalReading(
            id="bad",
            liturgical_day_id="no-such-day",
            reading_type=ReadingType.GOSPEL,
            citation="Lk 2:16-21",
            content="The shepherds went in haste",
        )

        with pytest.raises(PersistenceError):
            cache.apply_snapshot(snapshot.day, snapshot.readings + [bad])

        assert cache.get_day(JAN_1) is None
        assert cache.get_cache_stats()["cached_readings"] == 0

    def test_unbindable_value_raises_persistence_error(self, cache, make_snapshot):
        """Values SQLite cannot bind surface as PersistenceError, not OverflowError."""
        snapshot = make_snapshot(JAN_1, reading_count=2)
        snapshot.readings[1].order_sequence = 10**20

        with pytest.raises(PersistenceError) as exc_info:
            cache.apply_snapshot(snapshot.day, snapshot.readings)

        assert exc_info.value.operation == "apply_snapshot"
        assert isinstance(exc_info.value.__cause__, OverflowError)
        assert cache.get_day(JAN_1) is None
        assert cache.get_cache_stats()["cached_readings"] == 0


class TestWindow:
    """trim_outside_window / get_missing_dates."""

    def test_trim_removes_old_and_keeps_window(self, cache, make_snapshot):
        _seed_day(cache, make_snapshot, date(2025, 1, 1))
        _seed_day(cache, make_snapshot, date(2025, 8, 1))

        removed = cache.trim_outside_window(date(2025, 6, 1))

        assert removed == 1
        assert cache.get_day(date(2025, 1, 1)) is None
        assert cache.get_day(date(2025, 8, 1)) is not None
        # Readings of the trimmed day are gone too
        assert cache.get_cache_stats()["cached_readings"] == 2

    def test_no_entry_outside_window_after_trim(self, cache, make_snapshot):
        today = date(2025, 6, 1)
        for offset in (-120, -91, -90, 0, 90, 91, 200):
            _seed_day(cache, make_snapshot, today + timedelta(days=offset), reading_count=1)

        cache.trim_outside_window(today)

        kept = [
            offset for offset in (-120, -91, -90, 0, 90, 91, 200)
            if cache.get_day(today + timedelta(days=offset)) is not None
        ]
        assert kept == [-90, 0, 90]

    def test_custom_window_bounds(self, cache, make_snapshot):
        _seed_day(cache, make_snapshot, date(2025, 1, 10), reading_count=1)

        assert cache.trim_outside_window(date(2025, 1, 1), before=2, after=5) == 1

    def test_missing_dates_nearest_first(self, cache, make_snapshot):
        _seed_day(cache, make_snapshot, JAN_1, reading_count=1)

        missing = cache.get_missing_dates(JAN_1, before=2, after=2)

        assert missing == [
            date(2024, 12, 31),
            date(2025, 1, 2),
            date(2024, 12, 30),
            date(2025, 1, 3),
        ]


class TestSyncJobLedger:
    """record_sync_job and ledger queries."""

    def _job(self, name="manual_sync_2025_1_1", status=SyncJobStatus.RUNNING, **kwargs):
        return SyncJob(job_name=name, target_date=JAN_1, status=status, **kwargs)

    def test_record_is_upsert_by_name_and_date(self, cache, mock_clock):
        cache.record_sync_job(self._job())
        first = cache.get_sync_job("manual_sync_2025_1_1", JAN_1)

        mock_clock.tick(30)
        cache.record_sync_job(
            self._job(status=SyncJobStatus.SUCCESS, completed_at="2025-01-01T00:01:30")
        )

        assert cache.count_sync_jobs() == 1
        row = cache.get_sync_job("manual_sync_2025_1_1", JAN_1)
        assert row.status == SyncJobStatus.SUCCESS
        assert row.created_at == first.created_at

    def test_same_name_different_date_is_separate_row(self, cache):
        cache.record_sync_job(self._job())
        cache.record_sync_job(
            SyncJob(job_name="manual_sync_2025_1_1", target_date=date(2025, 1, 2))
        )

        assert cache.count_sync_jobs("manual_sync_2025_1_1") == 2

    def test_recent_successful_sync_window(self, cache, mock_clock):
        completed = mock_clock.now() - timedelta(hours=25)
        cache.record_sync_job(
            self._job(status=SyncJobStatus.SUCCESS, completed_at=to_iso(completed))
        )

        assert cache.recent_successful_sync(timedelta(hours=24)) is False
        assert cache.recent_successful_sync(timedelta(hours=26)) is True

    def test_failed_rows_do_not_count_as_success(self, cache, mock_clock):
        cache.record_sync_job(
            self._job(status=SyncJobStatus.FAILED, completed_at=to_iso(mock_clock.now()))
        )

        assert cache.recent_successful_sync(timedelta(hours=24)) is False
        assert cache.last_successful_sync() is None

    def test_recent_jobs_newest_first(self, cache, mock_clock):
        for n in range(3):
            cache.record_sync_job(
                SyncJob(job_name=f"job_{n}", target_date=JAN_1, status=SyncJobStatus.SUCCESS)
            )
            mock_clock.tick(60)

        jobs = cache.list_recent_sync_jobs(limit=2)

        assert [j.job_name for j in jobs] == ["job_2", "job_1"]

    def test_list_unfinished(self, cache):
        cache.record_sync_job(self._job(name="a", status=SyncJobStatus.PENDING))
        cache.record_sync_job(self._job(name="b", status=SyncJobStatus.RUNNING))
        cache.record_sync_job(self._job(name="c", status=SyncJobStatus.SUCCESS))

        assert [j.job_name for j in cache.list_unfinished_sync_jobs()] == ["a", "b"]

    def test_performance_metrics(self, cache, mock_clock):
        now = mock_clock.now()
        cache.record_sync_job(self._job(
            name="ok", status=SyncJobStatus.SUCCESS,
            completed_at=to_iso(now), duration_seconds=2.0,
        ))
        cache.record_sync_job(self._job(
            name="bad", status=SyncJobStatus.FAILED,
            completed_at=to_iso(now), duration_seconds=4.0,
        ))

        metrics = cache.get_performance_metrics(now - timedelta(days=7))

        assert metrics["total_jobs"] == 2
        assert metrics["success_rate"] == 0.5
        assert metrics["failure_count"] == 1
        assert metrics["average_duration_seconds"] == 3.0
        assert metrics["last_successful_sync"] == to_iso(now)

    def test_performance_metrics_empty(self, cache):
        metrics = cache.get_performance_metrics(datetime(2024, 1, 1))

        assert metrics["total_jobs"] == 0
        assert metrics["success_rate"] == 0.0
        assert metrics["last_successful_sync"] is None


class TestMetadataAndStats:

    def test_metadata_round_trip(self, cache):
        assert cache.get_metadata("last_sync_time") is None

        cache.set_metadata("last_sync_time", "2025-01-01T00:01:05")
        cache.set_metadata("last_sync_time", "2025-01-01T00:05:05")

        assert cache.get_metadata("last_sync_time") == "2025-01-01T00:05:05"

    def test_cache_stats(self, cache, make_snapshot):
        _seed_day(cache, make_snapshot, JAN_1, reading_count=4)
        cache.set_metadata("last_sync_time", "2025-01-01T00:01:05")

        stats = cache.get_cache_stats()

        assert stats["cached_days"] == 1
        assert stats["cached_readings"] == 4
        assert stats["approximate_size_mb"] > 0
        assert stats["last_sync_time"] == "2025-01-01T00:01:05"

    def test_creates_parent_directory(self, tmp_path, mock_clock):
        db_path = tmp_path / "nested" / "cache.db"

        store = CacheStore(db_path, clock=mock_clock.now)

        assert db_path.exists()
        assert store.get_cache_stats()["cached_days"] == 0


class TestEntities:
    """Entity helpers used by the cache."""

    def test_day_from_dict_defaults(self):
        day = LiturgicalDay.from_dict({"id": 7, "date": "2025-01-05T00:00:00"})

        assert day.id == "7"
        assert day.date == date(2025, 1, 5)
        assert day.liturgical_season == "Ordinary Time"
        assert day.is_sunday is True

    def test_unknown_reading_type_defaults_to_first_reading(self):
        assert ReadingType.parse("homily") == ReadingType.FIRST_READING

    def test_preview_text_truncates(self):
        reading = LiturgicalReading(
            id="r", liturgical_day_id="d", reading_type=ReadingType.GOSPEL,
            citation="Jn 1", content="x" * 200,
        )

        assert len(reading.preview_text) == 150
        assert reading.preview_text.endswith("...")

    def test_hash_ignores_cache_timestamp(self, make_snapshot):
        reading = make_snapshot(JAN_1, reading_count=1).readings[0]
        before = reading.data_hash

        reading.cache_timestamp = "2030-01-01T00:00:00"

        assert reading.data_hash == before
