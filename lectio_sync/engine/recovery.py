"""
Startup recovery for the sync ledger.

A crash (or a kill during shutdown) can leave ledger rows PENDING or
RUNNING. Such rows are finalized FAILED before any trigger is armed, so
guards and metrics never count a pass that did not finish.

Recovery is idempotent: running it twice changes nothing the second time.
"""

import logging
from datetime import datetime

from .cache_store import CacheStore
from .entities import Clock, SyncJobStatus, now_iso


logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted before completion (recovered on startup)"


class RecoveryManager:
    """Cleans up the ledger after an unclean shutdown."""

    def __init__(self, cache: CacheStore, clock: Clock = datetime.now):
        self.cache = cache
        self._clock = clock

    def recover_on_startup(self) -> dict:
        """
        Perform recovery on engine startup.

        Returns:
            Recovery statistics
        """
        stats = {
            "interrupted_jobs_recovered": 0,
            "errors": [],
        }

        logger.info("Starting sync ledger recovery...")

        try:
            unfinished = self.cache.list_unfinished_sync_jobs()
        except Exception as e:
            logger.error(f"Error reading unfinished sync jobs: {e}")
            stats["errors"].append(f"Unfinished jobs: {e}")
            return stats

        for job in unfinished:
            try:
                job.status = SyncJobStatus.FAILED
                job.completed_at = now_iso(self._clock)
                job.error_message = INTERRUPTED_MESSAGE
                self.cache.record_sync_job(job)
                stats["interrupted_jobs_recovered"] += 1
                logger.warning(
                    f"Recovered interrupted job {job.job_name} "
                    f"({job.target_date.isoformat()}) -> failed"
                )
            except Exception as e:
                logger.error(f"Error recovering job {job.job_name}: {e}")
                stats["errors"].append(f"{job.job_name}: {e}")

        logger.info(
            f"Recovery complete: "
            f"{stats['interrupted_jobs_recovered']} interrupted jobs recovered"
        )
        return stats
