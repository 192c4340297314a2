"""
Sync Engine Domain Entities.

- LiturgicalDay: Cached calendar row for one target date
- LiturgicalReading: Cached reading belonging to a LiturgicalDay
- RemoteSnapshot: What the remote store returned for one date
- SyncJob: Ledger record of one sync attempt, keyed by (job_name, target_date)
- StatusEvent: Lifecycle event fanned out to observers
- ReconcileResult: Created/updated counts of one reconciliation pass

Timestamps are local, naive and second-precision ISO strings so that the
ledger can be compared lexicographically.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Optional


Clock = Callable[[], datetime]

PREVIEW_LENGTH = 150


class SyncJobStatus(str, Enum):
    """
    Sync job status values.

    - PENDING: Created, work not yet started
    - RUNNING: Reconciliation in progress
    - SUCCESS: Cache reflects the remote snapshot
    - FAILED: Fetch or persistence failed, error_message is set
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ConnectivityStatus(str, Enum):
    """Process-wide reachability. Starts UNKNOWN."""

    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


class SyncStatus(str, Enum):
    """Current activity of the engine. Derived, never persisted."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"
    PAUSED = "paused"


class ReadingType(str, Enum):
    FIRST_READING = "first_reading"
    RESPONSORIAL_PSALM = "responsorial_psalm"
    SECOND_READING = "second_reading"
    GOSPEL = "gospel"
    ALLELUIA = "alleluia"
    COMMUNION_ANTIPHON = "communion_antiphon"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ReadingType":
        """Parse a wire value, defaulting to FIRST_READING for unknown types."""
        try:
            return cls(value)
        except ValueError:
            return cls.FIRST_READING


def to_iso(moment: datetime) -> str:
    """Format a datetime as a second-precision ISO string."""
    return moment.replace(microsecond=0).isoformat()


def now_iso(clock: Clock = datetime.now) -> str:
    """Get current time as ISO format string."""
    return to_iso(clock())


def parse_date(value: Any) -> date:
    """Accept a date, a datetime or an ISO string and return a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def job_name_for(purpose: str, target_date: date) -> str:
    """
    Ledger name for a sync purpose and date.

    e.g. job_name_for("automated_daily_sync", date(2025, 1, 1))
    -> "automated_daily_sync_2025_1_1"
    """
    return f"{purpose}_{target_date.year}_{target_date.month}_{target_date.day}"


def _content_hash(payload: dict) -> str:
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


@dataclass
class LiturgicalDay:
    """
    Calendar information for one date, as cached locally.

    `id` is the remote business id. `date` is unique in the cache.
    """

    id: str
    date: date
    liturgical_season: str = "Ordinary Time"
    liturgical_rank: str = "weekday"
    feast_name: Optional[str] = None
    commemoration: Optional[str] = None
    liturgical_color: str = "green"
    week_of_season: int = 1
    day_of_week: Optional[str] = None
    is_sunday: bool = False
    is_holy_day: bool = False
    cache_timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "LiturgicalDay":
        """Build from a remote/cached row, tolerating missing optional fields."""
        day_date = parse_date(data["date"])
        return cls(
            id=str(data["id"]),
            date=day_date,
            liturgical_season=data.get("liturgical_season") or "Ordinary Time",
            liturgical_rank=data.get("liturgical_rank") or "weekday",
            feast_name=data.get("feast_name"),
            commemoration=data.get("commemoration"),
            liturgical_color=data.get("liturgical_color") or "green",
            week_of_season=int(data.get("week_of_season") or 1),
            day_of_week=data.get("day_of_week") or day_date.strftime("%A"),
            is_sunday=_to_bool(data.get("is_sunday", day_date.weekday() == 6)),
            is_holy_day=_to_bool(data.get("is_holy_day", False)),
            cache_timestamp=data.get("cache_timestamp"),
        )

    def business_fields(self) -> dict:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "liturgical_season": self.liturgical_season,
            "liturgical_rank": self.liturgical_rank,
            "feast_name": self.feast_name,
            "commemoration": self.commemoration,
            "liturgical_color": self.liturgical_color,
            "week_of_season": self.week_of_season,
            "day_of_week": self.day_of_week,
            "is_sunday": self.is_sunday,
            "is_holy_day": self.is_holy_day,
        }

    @property
    def data_hash(self) -> str:
        return _content_hash(self.business_fields())

    def to_dict(self) -> dict:
        data = self.business_fields()
        data["cache_timestamp"] = self.cache_timestamp
        return data


@dataclass
class LiturgicalReading:
    """
    One reading of a liturgical day.

    Two readings with the same id are "unchanged" when their data_hash
    matches; the hash covers every business field except the timestamps.
    """

    id: str
    liturgical_day_id: str
    reading_type: ReadingType
    citation: str
    content: str
    order_sequence: int = 1
    biblical_book_id: Optional[str] = None
    chapter_verse: Optional[str] = None
    audio_url: Optional[str] = None
    cache_timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "LiturgicalReading":
        return cls(
            id=str(data["id"]),
            liturgical_day_id=str(data["liturgical_day_id"]),
            reading_type=ReadingType.parse(data.get("reading_type")),
            citation=data.get("citation") or "",
            content=data.get("content") or "",
            order_sequence=int(data.get("order_sequence") or 1),
            biblical_book_id=data.get("biblical_book_id"),
            chapter_verse=data.get("chapter_verse"),
            audio_url=data.get("audio_url"),
            cache_timestamp=data.get("cache_timestamp"),
        )

    @property
    def preview_text(self) -> str:
        if len(self.content) <= PREVIEW_LENGTH:
            return self.content
        return self.content[: PREVIEW_LENGTH - 3] + "..."

    def business_fields(self) -> dict:
        return {
            "id": self.id,
            "liturgical_day_id": self.liturgical_day_id,
            "reading_type": self.reading_type.value,
            "citation": self.citation,
            "content": self.content,
            "order_sequence": self.order_sequence,
            "biblical_book_id": self.biblical_book_id,
            "chapter_verse": self.chapter_verse,
            "audio_url": self.audio_url,
        }

    @property
    def data_hash(self) -> str:
        return _content_hash(self.business_fields())

    def to_dict(self) -> dict:
        data = self.business_fields()
        data["preview_text"] = self.preview_text
        data["cache_timestamp"] = self.cache_timestamp
        return data


@dataclass
class RemoteSnapshot:
    """A liturgical day and its readings as returned by the remote store."""

    day: LiturgicalDay
    readings: list[LiturgicalReading] = field(default_factory=list)


@dataclass
class ReconcileResult:
    """Outcome counts of a reconciliation pass. Removals are not processed records."""

    readings_created: int = 0
    readings_updated: int = 0
    readings_removed: int = 0

    @property
    def records_processed(self) -> int:
        return self.readings_created + self.readings_updated

    def __add__(self, other: "ReconcileResult") -> "ReconcileResult":
        return ReconcileResult(
            readings_created=self.readings_created + other.readings_created,
            readings_updated=self.readings_updated + other.readings_updated,
            readings_removed=self.readings_removed + other.readings_removed,
        )

    def to_dict(self) -> dict:
        return {
            "readings_created": self.readings_created,
            "readings_updated": self.readings_updated,
        }


@dataclass
class SyncJob:
    """
    Persisted record of one sync attempt.

    Exactly one row exists per (job_name, target_date); re-running the same
    job overwrites the previous outcome. created_at is kept from the first write.
    """

    job_name: str
    target_date: date
    status: SyncJobStatus = SyncJobStatus.PENDING
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    duration_seconds: Optional[float] = None
    created_at: Optional[str] = None

    @classmethod
    def create(
        cls,
        purpose: str,
        target_date: date,
        clock: Clock = datetime.now,
    ) -> "SyncJob":
        """Create a RUNNING job for a purpose and date."""
        return cls(
            job_name=job_name_for(purpose, target_date),
            target_date=target_date,
            status=SyncJobStatus.RUNNING,
            started_at=now_iso(clock),
        )

    def to_dict(self) -> dict:
        return {
            "job_name": self.job_name,
            "target_date": self.target_date.isoformat(),
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error_message": self.error_message,
            "records_processed": self.records_processed,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "duration_seconds": self.duration_seconds,
            "created_at": self.created_at,
        }


@dataclass
class StatusEvent:
    """
    Lifecycle event published on the StatusBroadcaster.

    status is one of: initialized, running, completed, error, skipped,
    paused, resumed, stopped.
    """

    status: str
    message: str
    timestamp: str
    scope: Optional[str] = None
    target_date: Optional[date] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "message": self.message,
            "timestamp": self.timestamp,
            "scope": self.scope,
            "target_date": self.target_date.isoformat() if self.target_date else None,
        }
