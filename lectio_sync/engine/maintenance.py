"""
Cache window maintenance.

Keeps the cache inside the rolling window [today - before, today + after]:
- trim(): drop days (and their readings) outside the window
- preload(): fill missing dates, nearest to today first, in batches
- run(): the periodic pass armed by the scheduler; always trims, and
  preloads when online and more than `preload_threshold` dates are missing

stop() makes a running preload return after its current batch.
"""

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Optional

from .cache_store import DEFAULT_DAYS_AFTER, DEFAULT_DAYS_BEFORE, CacheStore
from .connectivity import ConnectivityMonitor
from .coordinator import SyncCoordinator
from .entities import Clock, ConnectivityStatus
from .errors import SyncEngineError


logger = logging.getLogger(__name__)

DEFAULT_PRELOAD_BATCH_SIZE = 5
DEFAULT_PRELOAD_THRESHOLD = 10


class CacheMaintenance:
    """Owns the cache window: membership, trimming and preloading."""

    def __init__(
        self,
        cache: CacheStore,
        coordinator: SyncCoordinator,
        connectivity: ConnectivityMonitor,
        days_before: int = DEFAULT_DAYS_BEFORE,
        days_after: int = DEFAULT_DAYS_AFTER,
        preload_threshold: int = DEFAULT_PRELOAD_THRESHOLD,
        clock: Clock = datetime.now,
    ):
        self.cache = cache
        self.coordinator = coordinator
        self.connectivity = connectivity
        self.days_before = days_before
        self.days_after = days_after
        self.preload_threshold = preload_threshold
        self._clock = clock
        self._stop_event = threading.Event()

    def window(self, center: Optional[date] = None) -> tuple[date, date]:
        """Inclusive (start, end) of the cache window around center (default today)."""
        center = center or self._clock().date()
        return (
            center - timedelta(days=self.days_before),
            center + timedelta(days=self.days_after),
        )

    def in_window(self, target_date: date) -> bool:
        start, end = self.window()
        return start <= target_date <= end

    def stop(self) -> None:
        self._stop_event.set()

    def trim(self) -> int:
        """Trim the cache to the window around today. Returns removed days."""
        return self.cache.trim_outside_window(
            self._clock().date(),
            before=self.days_before,
            after=self.days_after,
        )

    def missing_dates(self) -> list[date]:
        return self.cache.get_missing_dates(
            self._clock().date(),
            before=self.days_before,
            after=self.days_after,
        )

    def preload(self, batch_size: int = DEFAULT_PRELOAD_BATCH_SIZE) -> dict:
        """
        Fill every missing date of the window, nearest to today first.

        Stops early when connectivity is lost or on shutdown; a failed date
        does not stop the preload. The window is trimmed afterwards.

        Returns:
            requested, synced, failed, skipped_offline, trimmed_days
        """
        missing = self.missing_dates()
        stats = {
            "requested": len(missing),
            "synced": 0,
            "failed": 0,
            "skipped_offline": 0,
            "trimmed_days": 0,
        }
        logger.info(f"Preloading {len(missing)} missing dates")

        for start in range(0, len(missing), batch_size):
            if self._stop_event.is_set() or not self.coordinator.accepting:
                logger.info(f"Preload stopped: shutting down, {len(missing) - start} dates left")
                break
            if self.connectivity.current_status() == ConnectivityStatus.OFFLINE:
                stats["skipped_offline"] = len(missing) - start
                logger.info(f"Preload stopped: offline, {stats['skipped_offline']} dates left")
                break

            for target_date in missing[start:start + batch_size]:
                try:
                    self.coordinator.reconcile(target_date)
                    stats["synced"] += 1
                except SyncEngineError as e:
                    stats["failed"] += 1
                    logger.warning(f"Preload of {target_date.isoformat()} failed: {e}")

        stats["trimmed_days"] = self.trim()
        logger.info(
            f"Preload complete: {stats['synced']} synced, {stats['failed']} failed, "
            f"{stats['skipped_offline']} skipped offline"
        )
        return stats

    def run(self) -> dict:
        """
        Periodic maintenance pass.

        Returns:
            trimmed_days, missing_dates and the preload stats (None when no
            preload ran)
        """
        stats = {"trimmed_days": self.trim(), "missing_dates": 0, "preload": None}

        missing = len(self.missing_dates())
        stats["missing_dates"] = missing

        if missing <= self.preload_threshold:
            logger.info(f"Cache maintenance: {stats['trimmed_days']} days trimmed, {missing} missing")
        elif self.connectivity.current_status() == ConnectivityStatus.OFFLINE:
            logger.info(f"Cache maintenance: {missing} dates missing, preload deferred while offline")
        else:
            logger.info(f"Cache maintenance: {missing} dates missing, preloading")
            stats["preload"] = self.preload()

        return stats
