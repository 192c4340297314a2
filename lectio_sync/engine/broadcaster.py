"""
Publish/subscribe channels.

Broadcaster fans each published item out to every currently connected
subscriber. Subscribers are either queue-backed (iterate or get()) or
callback-backed (called synchronously on the publishing thread).

- No replay: a subscriber only sees items published after it subscribed
- close() is terminal: queue subscribers wake up and stop iterating,
  later publish() calls are dropped
"""

import logging
import queue
import threading
from datetime import date, datetime
from typing import Callable, Generic, Iterator, Optional, TypeVar

from .entities import Clock, StatusEvent, now_iso


logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """Handle returned by Broadcaster.subscribe()."""

    def __init__(
        self,
        broadcaster: "Broadcaster[T]",
        callback: Optional[Callable[[T], None]] = None,
    ):
        self._broadcaster = broadcaster
        self._callback = callback
        self._queue: Optional[queue.Queue] = None if callback else queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, item: T) -> None:
        if self._closed:
            return
        if self._callback is not None:
            try:
                self._callback(item)
            except Exception:
                logger.exception(f"Subscriber of '{self._broadcaster.name}' raised")
        else:
            self._queue.put(item)

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._queue is not None:
            self._queue.put(_CLOSED)

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Wait for the next item.

        Returns:
            The item, or None once the channel is closed

        Raises:
            queue.Empty: If timeout elapses first
        """
        if self._queue is None:
            raise RuntimeError("Callback subscriptions do not queue items")
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Keep the marker so later get() calls also see the close
            self._queue.put(_CLOSED)
            return None
        return item

    def drain(self) -> list[T]:
        """Return every queued item without blocking."""
        items = []
        if self._queue is None:
            return items
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                break
            items.append(item)
        return items

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item

    def unsubscribe(self) -> None:
        self._broadcaster.unsubscribe(self)


class Broadcaster(Generic[T]):
    """Thread-safe multi-subscriber channel."""

    def __init__(self, name: str = "broadcaster"):
        self.name = name
        self._lock = threading.Lock()
        self._subscribers: list[Subscription[T]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(
        self,
        callback: Optional[Callable[[T], None]] = None,
    ) -> Subscription[T]:
        """
        Connect a new subscriber.

        Subscribing to a closed channel returns an already-closed subscription.
        """
        subscription = Subscription(self, callback)
        with self._lock:
            if self._closed:
                subscription._close()
            else:
                self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
        subscription._close()

    def publish(self, item: T) -> bool:
        """
        Deliver an item to all current subscribers.

        Returns:
            False if the channel is closed and the item was dropped
        """
        with self._lock:
            if self._closed:
                logger.debug(f"Dropped item on closed channel '{self.name}'")
                return False
            subscribers = list(self._subscribers)

        for subscription in subscribers:
            subscription._deliver(item)
        return True

    def close(self) -> None:
        """Close the channel. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = list(self._subscribers)
            self._subscribers.clear()

        for subscription in subscribers:
            subscription._close()
        logger.debug(f"Channel '{self.name}' closed")


class StatusBroadcaster(Broadcaster[StatusEvent]):
    """Lifecycle event channel of the sync engine."""

    def __init__(self, clock: Clock = datetime.now):
        super().__init__(name="sync-status")
        self._clock = clock

    def emit(
        self,
        status: str,
        message: str,
        scope: Optional[str] = None,
        target_date: Optional[date] = None,
    ) -> StatusEvent:
        """Build a timestamped StatusEvent and publish it."""
        event = StatusEvent(
            status=status,
            message=message,
            timestamp=now_iso(self._clock),
            scope=scope,
            target_date=target_date,
        )
        self.publish(event)
        return event
