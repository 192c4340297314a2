"""
Connectivity Monitor.

Tracks reachability of the remote store as a single process-wide
ConnectivityStatus (unknown -> online/offline, never terminal).

- A background thread probes the remote at a fixed interval
- Every transition is published on status_stream()
- Hosts that learn about reachability themselves can call set_status()
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from .broadcaster import Broadcaster, Subscription
from .entities import Clock, ConnectivityStatus, to_iso


logger = logging.getLogger(__name__)

Probe = Callable[[], bool]

STATUS_MESSAGES = {
    ConnectivityStatus.ONLINE: "Connected - Data syncing enabled",
    ConnectivityStatus.OFFLINE: "Offline - Using cached content",
    ConnectivityStatus.UNKNOWN: "Checking connection...",
}


class HttpProbe:
    """
    Reachability probe.

    Any HTTP response below 500 counts as reachable; transport errors and
    timeouts count as unreachable.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def __call__(self) -> bool:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.head(self.url)
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe to {self.url} failed: {e}")
            return False


class ConnectivityMonitor:
    """
    Observes network reachability.

    current_status() is safe to call from any thread. The monitor never
    triggers syncs itself; subscribers decide what a transition means.
    """

    def __init__(
        self,
        probe: Optional[Probe] = None,
        interval: float = 30.0,
        clock: Clock = datetime.now,
    ):
        """
        Args:
            probe: Callable returning True when the remote is reachable.
                Without a probe the status only changes via set_status().
            interval: Seconds between background probes
            clock: Source of "now" for online/offline bookkeeping
        """
        self._probe = probe
        self.interval = interval
        self._clock = clock

        self._status = ConnectivityStatus.UNKNOWN
        self._lock = threading.Lock()
        self._stream: Broadcaster[ConnectivityStatus] = Broadcaster(name="connectivity")
        self._online_event = threading.Event()

        self._last_online_time: Optional[datetime] = None
        self._went_offline_at: Optional[datetime] = None
        self._offline_duration = timedelta(0)

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._started = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start background probing. No-op without a probe."""
        if self._started:
            return
        self._started = True

        if self._probe is None:
            logger.info("Connectivity monitor started without probe (host-driven)")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="connectivity-monitor",
        )
        self._thread.start()
        logger.info(f"Connectivity monitor started (interval={self.interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop probing and close the status stream."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._started = False
        self._stream.close()
        logger.info("Connectivity monitor stopped")

    @property
    def is_initialized(self) -> bool:
        return self._started

    def _run_loop(self) -> None:
        self.check_now()
        while not self._stop_event.wait(self.interval):
            self.check_now()

    # =========================================================================
    # Status
    # =========================================================================

    def check_now(self) -> ConnectivityStatus:
        """Probe immediately and return the resulting status."""
        if self._probe is None:
            return self.current_status()

        try:
            reachable = self._probe()
        except Exception as e:
            logger.warning(f"Connectivity probe raised: {e}")
            self.set_status(ConnectivityStatus.UNKNOWN)
        else:
            self.set_status(
                ConnectivityStatus.ONLINE if reachable else ConnectivityStatus.OFFLINE
            )
        return self.current_status()

    def set_status(self, status: ConnectivityStatus) -> None:
        """Record a new status; publishes only on an actual transition."""
        now = self._clock()
        with self._lock:
            previous = self._status
            if previous == status:
                return
            self._status = status

            if status == ConnectivityStatus.ONLINE:
                if self._went_offline_at is not None:
                    self._offline_duration = now - self._went_offline_at
                    self._went_offline_at = None
                self._last_online_time = now
                self._online_event.set()
            else:
                if previous == ConnectivityStatus.ONLINE:
                    self._went_offline_at = now
                self._online_event.clear()

        if status == ConnectivityStatus.ONLINE and previous == ConnectivityStatus.OFFLINE:
            logger.info(
                f"Connectivity: {previous.value} -> {status.value} "
                f"(offline for {int(self._offline_duration.total_seconds() // 60)} min)"
            )
        else:
            logger.info(f"Connectivity: {previous.value} -> {status.value}")
        self._stream.publish(status)

    def current_status(self) -> ConnectivityStatus:
        with self._lock:
            return self._status

    def status_stream(
        self,
        callback: Optional[Callable[[ConnectivityStatus], None]] = None,
    ) -> Subscription[ConnectivityStatus]:
        """Subscribe to future status transitions (no replay)."""
        return self._stream.subscribe(callback)

    @property
    def is_online(self) -> bool:
        return self.current_status() == ConnectivityStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self.current_status() == ConnectivityStatus.OFFLINE

    @property
    def should_attempt_sync(self) -> bool:
        return self.is_online

    @property
    def status_message(self) -> str:
        return STATUS_MESSAGES[self.current_status()]

    @property
    def last_online_time(self) -> Optional[datetime]:
        return self._last_online_time

    @property
    def offline_duration(self) -> timedelta:
        """Length of the most recent completed offline period."""
        return self._offline_duration

    @property
    def time_since_last_online(self) -> Optional[timedelta]:
        if self._last_online_time is None:
            return None
        return self._clock() - self._last_online_time

    def wait_for_online(self, timeout: float = 30.0) -> bool:
        """Block until online or timeout. Returns True if online."""
        if self.is_online:
            return True
        return self._online_event.wait(timeout)

    def get_info(self) -> dict:
        return {
            "status": self.current_status().value,
            "message": self.status_message,
            "is_initialized": self._started,
            "last_online_time": (
                to_iso(self._last_online_time) if self._last_online_time else None
            ),
            "offline_duration_minutes": int(self._offline_duration.total_seconds() // 60),
        }
