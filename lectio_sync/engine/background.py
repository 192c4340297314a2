"""
Platform background-execution capability.

The host environment (mobile OS, or an operator calling the HTTP endpoint)
decides when a background slot is granted. The scheduler picks one of two
implementations at startup instead of branching on the platform inline:

- WithBackgroundSlot: slots are dispatched and every task id must be
  finished (acknowledged) exactly once, whatever the sync outcome
- ForegroundOnly: no slots; core triggers still run
"""

import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from .entities import Clock


logger = logging.getLogger(__name__)

SlotHandler = Callable[[str], None]

DEFAULT_MINIMUM_INTERVAL = timedelta(minutes=15)


class BackgroundCapability(Protocol):
    """Protocol for platform background execution."""

    platform: str

    @property
    def available(self) -> bool:
        ...

    def configure(
        self,
        on_fetch: SlotHandler,
        on_timeout: SlotHandler,
        minimum_interval: timedelta = DEFAULT_MINIMUM_INTERVAL,
    ) -> None:
        """Register slot handlers. May raise if the platform refuses."""
        ...

    def finish(self, task_id: str) -> None:
        """Acknowledge a slot to the host."""
        ...

    def stop(self) -> None:
        ...


class ForegroundOnly:
    """Platforms without background execution (web)."""

    platform = "web"

    @property
    def available(self) -> bool:
        return False

    def configure(
        self,
        on_fetch: SlotHandler,
        on_timeout: SlotHandler,
        minimum_interval: timedelta = DEFAULT_MINIMUM_INTERVAL,
    ) -> None:
        logger.info("Background execution not supported on this platform")

    def finish(self, task_id: str) -> None:
        pass

    def stop(self) -> None:
        pass


class WithBackgroundSlot:
    """
    Host-granted background slots with a minimum interval between runs.

    dispatch() is the host's entry point. A slot arriving sooner than the
    minimum interval after the previous one is acknowledged without running.
    """

    platform = "mobile"

    def __init__(self, clock: Clock = datetime.now, history_size: int = 50):
        self._clock = clock
        self._lock = threading.Lock()
        self._on_fetch: Optional[SlotHandler] = None
        self._on_timeout: Optional[SlotHandler] = None
        self._minimum_interval = DEFAULT_MINIMUM_INTERVAL
        self._last_dispatch: Optional[datetime] = None
        self._open: set[str] = set()
        self._finished: deque[str] = deque(maxlen=history_size)

    @property
    def available(self) -> bool:
        return self._on_fetch is not None

    @property
    def minimum_interval(self) -> timedelta:
        return self._minimum_interval

    def configure(
        self,
        on_fetch: SlotHandler,
        on_timeout: SlotHandler,
        minimum_interval: timedelta = DEFAULT_MINIMUM_INTERVAL,
    ) -> None:
        if minimum_interval < timedelta(0):
            raise ValueError("minimum_interval must not be negative")
        with self._lock:
            self._on_fetch = on_fetch
            self._on_timeout = on_timeout
            self._minimum_interval = minimum_interval
        logger.info(
            f"Background slot configured (minimum interval "
            f"{int(minimum_interval.total_seconds() // 60)} min)"
        )

    def dispatch(self, task_id: str) -> bool:
        """
        Hand a host-granted slot to the scheduler.

        Returns:
            True if the slot handler ran, False if it was acknowledged
            immediately (not configured, or inside the minimum interval)
        """
        now = self._clock()
        with self._lock:
            handler = self._on_fetch
            too_soon = (
                self._last_dispatch is not None
                and now - self._last_dispatch < self._minimum_interval
            )
            if handler is not None and not too_soon:
                self._last_dispatch = now
                self._open.add(task_id)

        if handler is None:
            logger.warning(f"Background slot {task_id} received before configuration")
            self.finish(task_id)
            return False
        if too_soon:
            logger.info(f"Background slot {task_id} inside minimum interval, acknowledged")
            self.finish(task_id)
            return False

        handler(task_id)
        return True

    def timeout(self, task_id: str) -> None:
        """Host deadline reached for a slot."""
        with self._lock:
            handler = self._on_timeout
        logger.warning(f"Background slot {task_id} timed out")
        if handler is not None:
            handler(task_id)
        else:
            self.finish(task_id)

    def finish(self, task_id: str) -> None:
        """Acknowledge a slot. Idempotent per task id."""
        with self._lock:
            self._open.discard(task_id)
            if task_id in self._finished:
                return
            self._finished.append(task_id)
        logger.debug(f"Background slot {task_id} finished")

    def is_open(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._open

    def was_finished(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._finished

    def stop(self) -> None:
        with self._lock:
            open_tasks = list(self._open)
            self._on_fetch = None
            self._on_timeout = None
        for task_id in open_tasks:
            self.finish(task_id)
        logger.info("Background slot released")
