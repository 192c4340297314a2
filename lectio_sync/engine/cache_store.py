"""
Local cache for liturgical days, readings and the sync-job ledger.

SQLite with WAL mode:
- One connection per operation, so worker threads never share a handle
- Every multi-row write runs in a single transaction (all or nothing)
- Upserts only rewrite a row when its data_hash changes, so writing the
  same content twice causes no observable change

Tables:
- liturgical_days_cache: one row per date, keyed by remote id
- liturgical_readings_cache: readings keyed by remote id
- sync_jobs: ledger, unique on (job_name, target_date)
- cache_metadata: key/value pairs (e.g. last_sync_time)
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .entities import (
    Clock,
    LiturgicalDay,
    LiturgicalReading,
    ReadingType,
    SyncJob,
    SyncJobStatus,
    now_iso,
    to_iso,
)
from .errors import PersistenceError


logger = logging.getLogger(__name__)

# Rolling cache window around today (inclusive)
DEFAULT_DAYS_BEFORE = 90
DEFAULT_DAYS_AFTER = 90

LAST_SYNC_TIME_KEY = "last_sync_time"


class CacheStore:
    """
    SQLite-backed store for cached content and the sync ledger.

    Does NOT decide what to fetch or when. Every sqlite3 or bind failure surfaces
    to the caller as PersistenceError.
    """

    def __init__(
        self,
        db_path: str | Path,
        clock: Clock = datetime.now,
        busy_timeout: float = 30.0,
    ):
        """
        Initialize the cache store and create the schema if needed.

        Args:
            db_path: Path to SQLite database file
            clock: Source of "now" for cache timestamps and ledger writes
            busy_timeout: Seconds a writer waits for a competing lock
        """
        self.db_path = str(db_path)
        self._clock = clock
        self._busy_timeout = busy_timeout
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._translate_errors("initialize"):
            self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (sqlite3.Error, OverflowError, ValueError, TypeError) as e:
            # Bind-time failures (e.g. an int beyond SQLite's 64-bit range)
            # are not sqlite3.Error subclasses
            logger.error(f"Cache {operation} failed: {e}")
            raise PersistenceError(operation, str(e)) from e

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS liturgical_days_cache (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL UNIQUE,
                    liturgical_season TEXT NOT NULL,
                    liturgical_rank TEXT,
                    feast_name TEXT,
                    commemoration TEXT,
                    liturgical_color TEXT NOT NULL,
                    week_of_season INTEGER,
                    day_of_week TEXT,
                    is_sunday INTEGER NOT NULL DEFAULT 0,
                    is_holy_day INTEGER NOT NULL DEFAULT 0,
                    data_hash TEXT NOT NULL,
                    cache_timestamp TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS liturgical_readings_cache (
                    id TEXT PRIMARY KEY,
                    liturgical_day_id TEXT NOT NULL,
                    reading_type TEXT NOT NULL,
                    citation TEXT NOT NULL,
                    content TEXT NOT NULL,
                    preview_text TEXT,
                    biblical_book_id TEXT,
                    chapter_verse TEXT,
                    audio_url TEXT,
                    order_sequence INTEGER NOT NULL DEFAULT 1,
                    data_hash TEXT NOT NULL,
                    cache_timestamp TEXT NOT NULL,
                    FOREIGN KEY (liturgical_day_id)
                        REFERENCES liturgical_days_cache(id) ON DELETE CASCADE
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_readings_day_id
                ON liturgical_readings_cache (liturgical_day_id, order_sequence)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_name TEXT NOT NULL,
                    target_date TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    error_message TEXT,
                    records_processed INTEGER NOT NULL DEFAULT 0,
                    records_created INTEGER NOT NULL DEFAULT 0,
                    records_updated INTEGER NOT NULL DEFAULT 0,
                    duration_seconds REAL,
                    created_at TEXT NOT NULL,
                    UNIQUE (job_name, target_date)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sync_jobs_status_completed
                ON sync_jobs (status, completed_at)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    # =========================================================================
    # Liturgical Days
    # =========================================================================

    def get_day(self, target_date: date) -> Optional[LiturgicalDay]:
        """Get the cached day for a date, or None."""
        with self._translate_errors("get_day"), self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM liturgical_days_cache WHERE date = ?",
                (target_date.isoformat(),),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_day(row)

    def _row_to_day(self, row: sqlite3.Row) -> LiturgicalDay:
        return LiturgicalDay(
            id=row["id"],
            date=date.fromisoformat(row["date"]),
            liturgical_season=row["liturgical_season"],
            liturgical_rank=row["liturgical_rank"],
            feast_name=row["feast_name"],
            commemoration=row["commemoration"],
            liturgical_color=row["liturgical_color"],
            week_of_season=row["week_of_season"],
            day_of_week=row["day_of_week"],
            is_sunday=bool(row["is_sunday"]),
            is_holy_day=bool(row["is_holy_day"]),
            cache_timestamp=row["cache_timestamp"],
        )

    def upsert_day(self, day: LiturgicalDay) -> bool:
        """
        Insert or refresh a cached day.

        A different id already cached for the same date is replaced together
        with its readings (the remote store re-keyed the day).

        Returns:
            True if a row was written, False if the content was unchanged
        """
        with self._translate_errors("upsert_day"), self._transaction() as conn:
            return self._write_day(conn, day, now_iso(self._clock))

    def _write_day(self, conn: sqlite3.Connection, day: LiturgicalDay, timestamp: str) -> bool:
        conn.execute(
            "DELETE FROM liturgical_readings_cache WHERE liturgical_day_id IN ("
            "SELECT id FROM liturgical_days_cache WHERE date = ? AND id != ?)",
            (day.date.isoformat(), day.id),
        )
        conn.execute(
            "DELETE FROM liturgical_days_cache WHERE date = ? AND id != ?",
            (day.date.isoformat(), day.id),
        )
        cursor = conn.execute(
            """
            INSERT INTO liturgical_days_cache (
                id, date, liturgical_season, liturgical_rank, feast_name,
                commemoration, liturgical_color, week_of_season, day_of_week,
                is_sunday, is_holy_day, data_hash, cache_timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                date = excluded.date,
                liturgical_season = excluded.liturgical_season,
                liturgical_rank = excluded.liturgical_rank,
                feast_name = excluded.feast_name,
                commemoration = excluded.commemoration,
                liturgical_color = excluded.liturgical_color,
                week_of_season = excluded.week_of_season,
                day_of_week = excluded.day_of_week,
                is_sunday = excluded.is_sunday,
                is_holy_day = excluded.is_holy_day,
                data_hash = excluded.data_hash,
                cache_timestamp = excluded.cache_timestamp
            WHERE liturgical_days_cache.data_hash IS NOT excluded.data_hash
            """,
            (
                day.id,
                day.date.isoformat(),
                day.liturgical_season,
                day.liturgical_rank,
                day.feast_name,
                day.commemoration,
                day.liturgical_color,
                day.week_of_season,
                day.day_of_week,
                1 if day.is_sunday else 0,
                1 if day.is_holy_day else 0,
                day.data_hash,
                timestamp,
            ),
        )
        return cursor.rowcount > 0

    # =========================================================================
    # Liturgical Readings
    # =========================================================================

    def get_readings(self, target_date: date) -> list[LiturgicalReading]:
        """Get cached readings for a date, ordered by reading order."""
        with self._translate_errors("get_readings"), self._connection() as conn:
            rows = conn.execute(
                """
                SELECT r.* FROM liturgical_readings_cache r
                JOIN liturgical_days_cache d ON d.id = r.liturgical_day_id
                WHERE d.date = ?
                ORDER BY r.order_sequence ASC, r.id ASC
                """,
                (target_date.isoformat(),),
            ).fetchall()

        return [self._row_to_reading(row) for row in rows]

    def _row_to_reading(self, row: sqlite3.Row) -> LiturgicalReading:
        return LiturgicalReading(
            id=row["id"],
            liturgical_day_id=row["liturgical_day_id"],
            reading_type=ReadingType.parse(row["reading_type"]),
            citation=row["citation"],
            content=row["content"],
            order_sequence=row["order_sequence"],
            biblical_book_id=row["biblical_book_id"],
            chapter_verse=row["chapter_verse"],
            audio_url=row["audio_url"],
            cache_timestamp=row["cache_timestamp"],
        )

    def upsert_readings(self, readings: Iterable[LiturgicalReading]) -> int:
        """
        Insert or refresh cached readings in one transaction.

        The owning day must already be cached.

        Returns:
            Number of rows actually written
        """
        with self._translate_errors("upsert_readings"), self._transaction() as conn:
            return self._write_readings(conn, readings, now_iso(self._clock))

    def _write_readings(
        self,
        conn: sqlite3.Connection,
        readings: Iterable[LiturgicalReading],
        timestamp: str,
    ) -> int:
        written = 0
        for reading in readings:
            cursor = conn.execute(
                """
                INSERT INTO liturgical_readings_cache (
                    id, liturgical_day_id, reading_type, citation, content,
                    preview_text, biblical_book_id, chapter_verse, audio_url,
                    order_sequence, data_hash, cache_timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    liturgical_day_id = excluded.liturgical_day_id,
                    reading_type = excluded.reading_type,
                    citation = excluded.citation,
                    content = excluded.content,
                    preview_text = excluded.preview_text,
                    biblical_book_id = excluded.biblical_book_id,
                    chapter_verse = excluded.chapter_verse,
                    audio_url = excluded.audio_url,
                    order_sequence = excluded.order_sequence,
                    data_hash = excluded.data_hash,
                    cache_timestamp = excluded.cache_timestamp
                WHERE liturgical_readings_cache.data_hash IS NOT excluded.data_hash
                """,
                (
                    reading.id,
                    reading.liturgical_day_id,
                    reading.reading_type.value,
                    reading.citation,
                    reading.content,
                    reading.preview_text,
                    reading.biblical_book_id,
                    reading.chapter_verse,
                    reading.audio_url,
                    reading.order_sequence,
                    reading.data_hash,
                    timestamp,
                ),
            )
            written += max(cursor.rowcount, 0)
        return written

    def delete_readings(self, reading_ids: Iterable[str]) -> int:
        """Delete cached readings by id. Returns number of rows removed."""
        with self._translate_errors("delete_readings"), self._transaction() as conn:
            return self._remove_readings(conn, reading_ids)

    def _remove_readings(self, conn: sqlite3.Connection, reading_ids: Iterable[str]) -> int:
        ids = list(reading_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cursor = conn.execute(
            f"DELETE FROM liturgical_readings_cache WHERE id IN ({placeholders})",
            ids,
        )
        return cursor.rowcount

    def apply_snapshot(
        self,
        day: LiturgicalDay,
        changed: Iterable[LiturgicalReading],
        stale_ids: Iterable[str] = (),
    ) -> int:
        """
        Write a reconciled day in a single transaction.

        Upserts the day and the changed readings and removes readings the
        remote no longer has. Nothing is committed if any step fails.

        Returns:
            Number of stale readings removed
        """
        timestamp = now_iso(self._clock)
        with self._translate_errors("apply_snapshot"), self._transaction() as conn:
            self._write_day(conn, day, timestamp)
            self._write_readings(conn, changed, timestamp)
            return self._remove_readings(conn, stale_ids)

    # =========================================================================
    # Window Maintenance
    # =========================================================================

    def trim_outside_window(
        self,
        center_date: date,
        before: int = DEFAULT_DAYS_BEFORE,
        after: int = DEFAULT_DAYS_AFTER,
    ) -> int:
        """
        Remove cached days (and their readings) outside
        [center_date - before, center_date + after].

        Runs as one transaction; concurrent readers see either the whole
        window before the trim or the trimmed window.

        Returns:
            Number of days removed
        """
        start = (center_date - timedelta(days=before)).isoformat()
        end = (center_date + timedelta(days=after)).isoformat()

        with self._translate_errors("trim"), self._transaction() as conn:
            readings = conn.execute(
                "DELETE FROM liturgical_readings_cache WHERE liturgical_day_id IN ("
                "SELECT id FROM liturgical_days_cache WHERE date < ? OR date > ?)",
                (start, end),
            ).rowcount
            days = conn.execute(
                "DELETE FROM liturgical_days_cache WHERE date < ? OR date > ?",
                (start, end),
            ).rowcount

        if days:
            logger.info(
                f"Trimmed cache window {start}..{end}: {days} days, {readings} readings removed"
            )
        return days

    def get_missing_dates(
        self,
        center_date: date,
        before: int = DEFAULT_DAYS_BEFORE,
        after: int = DEFAULT_DAYS_AFTER,
    ) -> list[date]:
        """Dates in the window with no cached day, nearest to center_date first."""
        start = center_date - timedelta(days=before)
        end = center_date + timedelta(days=after)

        with self._translate_errors("get_missing_dates"), self._connection() as conn:
            rows = conn.execute(
                "SELECT date FROM liturgical_days_cache WHERE date BETWEEN ? AND ?",
                (start.isoformat(), end.isoformat()),
            ).fetchall()

        cached = {row["date"] for row in rows}
        missing = [
            start + timedelta(days=offset)
            for offset in range((end - start).days + 1)
            if (start + timedelta(days=offset)).isoformat() not in cached
        ]
        missing.sort(key=lambda d: (abs((d - center_date).days), d))
        return missing

    # =========================================================================
    # Sync Job Ledger
    # =========================================================================

    def record_sync_job(self, job: SyncJob) -> SyncJob:
        """
        Upsert a ledger row by (job_name, target_date).

        The first write's created_at is preserved on later overwrites.
        """
        if job.created_at is None:
            job.created_at = now_iso(self._clock)

        with self._translate_errors("record_sync_job"), self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_jobs (
                    job_name, target_date, status, started_at, completed_at,
                    error_message, records_processed, records_created,
                    records_updated, duration_seconds, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(job_name, target_date) DO UPDATE SET
                    status = excluded.status,
                    started_at = excluded.started_at,
                    completed_at = excluded.completed_at,
                    error_message = excluded.error_message,
                    records_processed = excluded.records_processed,
                    records_created = excluded.records_created,
                    records_updated = excluded.records_updated,
                    duration_seconds = excluded.duration_seconds
                """,
                (
                    job.job_name,
                    job.target_date.isoformat(),
                    job.status.value,
                    job.started_at,
                    job.completed_at,
                    job.error_message,
                    job.records_processed,
                    job.records_created,
                    job.records_updated,
                    job.duration_seconds,
                    job.created_at,
                ),
            )
        return job

    def get_sync_job(self, job_name: str, target_date: date) -> Optional[SyncJob]:
        """Get a ledger row by key."""
        with self._translate_errors("get_sync_job"), self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM sync_jobs WHERE job_name = ? AND target_date = ?",
                (job_name, target_date.isoformat()),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_sync_job(row)

    def _row_to_sync_job(self, row: sqlite3.Row) -> SyncJob:
        return SyncJob(
            job_name=row["job_name"],
            target_date=date.fromisoformat(row["target_date"]),
            status=SyncJobStatus(row["status"]),
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error_message=row["error_message"],
            records_processed=row["records_processed"],
            records_created=row["records_created"],
            records_updated=row["records_updated"],
            duration_seconds=row["duration_seconds"],
            created_at=row["created_at"],
        )

    def count_sync_jobs(self, job_name: Optional[str] = None) -> int:
        """Count ledger rows, optionally for one job name."""
        with self._translate_errors("count_sync_jobs"), self._connection() as conn:
            if job_name is None:
                row = conn.execute("SELECT COUNT(*) FROM sync_jobs").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM sync_jobs WHERE job_name = ?",
                    (job_name,),
                ).fetchone()
        return row[0]

    def recent_successful_sync(self, within: timedelta) -> bool:
        """True iff a success row completed within the given duration exists."""
        cutoff = to_iso(self._clock() - within)
        with self._translate_errors("recent_successful_sync"), self._connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM sync_jobs WHERE status = ? AND completed_at >= ? LIMIT 1",
                (SyncJobStatus.SUCCESS.value, cutoff),
            ).fetchone()
        return row is not None

    def last_successful_sync(self) -> Optional[str]:
        """Completion time of the most recent success row."""
        with self._translate_errors("last_successful_sync"), self._connection() as conn:
            row = conn.execute(
                "SELECT MAX(completed_at) FROM sync_jobs WHERE status = ?",
                (SyncJobStatus.SUCCESS.value,),
            ).fetchone()
        return row[0]

    def list_recent_sync_jobs(self, limit: int = 10) -> list[SyncJob]:
        """Ledger rows ordered by creation time, newest first."""
        with self._translate_errors("list_recent_sync_jobs"), self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_jobs ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_sync_job(row) for row in rows]

    def list_unfinished_sync_jobs(self) -> list[SyncJob]:
        """Rows left PENDING or RUNNING (only possible after a crash)."""
        with self._translate_errors("list_unfinished_sync_jobs"), self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_jobs WHERE status IN (?, ?) ORDER BY id ASC",
                (SyncJobStatus.PENDING.value, SyncJobStatus.RUNNING.value),
            ).fetchall()
        return [self._row_to_sync_job(row) for row in rows]

    def get_performance_metrics(self, since: datetime) -> dict:
        """
        Aggregate ledger rows created at or after `since`.

        Returns:
            total_jobs, success_rate (0..1), failure_count,
            average_duration_seconds, last_successful_sync
        """
        with self._translate_errors("get_performance_metrics"), self._connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS succeeded,
                    SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS failed,
                    AVG(duration_seconds) AS avg_duration,
                    MAX(CASE WHEN status = ? THEN completed_at END) AS last_success
                FROM sync_jobs
                WHERE created_at >= ?
                """,
                (
                    SyncJobStatus.SUCCESS.value,
                    SyncJobStatus.FAILED.value,
                    SyncJobStatus.SUCCESS.value,
                    to_iso(since),
                ),
            ).fetchone()

        total = row["total"] or 0
        succeeded = row["succeeded"] or 0
        return {
            "total_jobs": total,
            "success_rate": (succeeded / total) if total else 0.0,
            "failure_count": row["failed"] or 0,
            "average_duration_seconds": float(row["avg_duration"] or 0.0),
            "last_successful_sync": row["last_success"],
        }

    # =========================================================================
    # Metadata & Stats
    # =========================================================================

    def set_metadata(self, key: str, value: str) -> None:
        with self._translate_errors("set_metadata"), self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO cache_metadata (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, now_iso(self._clock)),
            )

    def get_metadata(self, key: str) -> Optional[str]:
        with self._translate_errors("get_metadata"), self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM cache_metadata WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def get_cache_stats(self) -> dict:
        """
        Get cache statistics.

        Returns:
            cached_days, cached_readings, approximate_size_mb, last_sync_time
        """
        with self._translate_errors("get_cache_stats"), self._connection() as conn:
            days = conn.execute("SELECT COUNT(*) FROM liturgical_days_cache").fetchone()[0]
            readings = conn.execute(
                "SELECT COUNT(*) FROM liturgical_readings_cache"
            ).fetchone()[0]
            size = conn.execute(
                "SELECT page_count * page_size FROM pragma_page_count(), pragma_page_size()"
            ).fetchone()[0]

        return {
            "cached_days": days,
            "cached_readings": readings,
            "approximate_size_mb": round((size or 0) / (1024 * 1024), 3),
            "last_sync_time": self.get_metadata(LAST_SYNC_TIME_KEY),
        }
