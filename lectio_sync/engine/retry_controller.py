"""
Retry Controller for the daily sync.

- A failed primary daily sync gets exactly one retry after a fixed delay
- No exponential backoff and no retry chain: the retry itself never retries
- The pending retry is an APScheduler date job with a stable id, so it can
  be replaced by a newer failure or cancelled on shutdown

What RetryController MUST NOT do:
- Run the sync itself
- Decide whether a failure deserves a retry
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger


logger = logging.getLogger(__name__)


DEFAULT_RETRY_DELAY = timedelta(minutes=30)
RETRY_JOB_ID = "primary-retry"


class RetryController:
    """
    Owns the single pending retry of the primary daily sync.

    The job id is the cancellation token: scheduling again replaces the
    pending retry, cancel() removes it.
    """

    def __init__(
        self,
        job_scheduler: BaseScheduler,
        delay: timedelta = DEFAULT_RETRY_DELAY,
    ):
        """
        Args:
            job_scheduler: APScheduler instance the retry job is added to
            delay: Wait between the failure and the retry
        """
        self.job_scheduler = job_scheduler
        self.delay = delay

    def schedule(
        self,
        func: Callable,
        args: tuple = (),
        kwargs: Optional[dict] = None,
    ) -> datetime:
        """
        Schedule (or replace) the pending retry.

        Returns:
            Time the retry will run
        """
        run_date = datetime.now() + self.delay
        self.job_scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=run_date),
            args=args,
            kwargs=kwargs or {},
            id=RETRY_JOB_ID,
            name="Primary daily sync retry",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=None,
        )
        logger.info(f"Primary sync retry scheduled for {run_date.isoformat(timespec='seconds')}")
        return run_date

    @property
    def pending(self) -> bool:
        return self.job_scheduler.get_job(RETRY_JOB_ID) is not None

    def cancel(self) -> bool:
        """
        Cancel the pending retry.

        Returns:
            True if a retry was pending
        """
        try:
            self.job_scheduler.remove_job(RETRY_JOB_ID)
        except JobLookupError:
            return False
        logger.info("Pending primary sync retry cancelled")
        return True
