"""Fan-out of committed changes to connected observers.

Delivery is best-effort and at-most-once: an event reaches the subscriptions
registered when it is published, nothing is replayed to later subscribers,
and a subscriber that cannot take the event is dropped without the publisher
ever seeing an error.
"""
import asyncio
import enum
import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

logger = logging.getLogger("ticketflow-core.notifier")


class ChangeKind(str, enum.Enum):
    """Kinds of committed change published to observers."""

    TICKET_CREATED = "ticket:created"
    TICKET_UPDATED = "ticket:updated"
    COMMENT_CREATED = "comment:created"


@dataclass(frozen=True)
class ChangeEvent:
    """One committed change."""

    kind: ChangeKind
    payload: dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        """Render as a Server-Sent Events frame."""
        return f"event: {self.kind.value}\ndata: {json.dumps(self.payload, default=str)}\n\n"


class SubscriptionClosed(Exception):
    """Raised when delivering to a subscription that has been torn down."""


class Subscription:
    """
    Handle for one observer.

    Owns a bounded queue. Delivery and teardown share a lock so an event is
    never queued on a subscription that is closing.

    A subscription created with an event loop can also be awaited with
    ``next_event``: publishers on other threads wake the loop through
    ``call_soon_threadsafe`` and no worker thread is held while waiting.
    """

    def __init__(self, max_pending: int = 256, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.id = uuid4().hex
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._lock = threading.Lock()
        self._closed = False
        self._loop = loop
        self._wakeup: Optional[asyncio.Event] = asyncio.Event() if loop is not None else None

    @property
    def closed(self) -> bool:
        return self._closed

    def _wake(self) -> None:
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._wakeup.set)
        except RuntimeError:
            # Loop already closed; the stream that owned it is gone
            self._closed = True
            raise SubscriptionClosed(self.id)

    def deliver(self, event: ChangeEvent) -> None:
        """
        Queue an event for this observer.

        Raises:
            SubscriptionClosed: If the subscription was closed
            queue.Full: If the observer is not keeping up
        """
        with self._lock:
            if self._closed:
                raise SubscriptionClosed(self.id)
            self._queue.put_nowait(event)
            self._wake()

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """
        Wait for the next event, blocking the calling thread.

        Returns:
            The next event, or None if the timeout elapsed or the
            subscription is closed and drained
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    async def next_event(self, timeout: float) -> Optional[ChangeEvent]:
        """
        Await the next event on the subscription's event loop.

        Returns:
            The next event, or None if the timeout elapsed or the
            subscription was closed
        """
        if self._wakeup is None:
            raise RuntimeError(f"Subscription {self.id} is not bound to an event loop")

        while True:
            try:
                return self._queue.get_nowait()
            except queue.Empty:
                pass
            if self._closed:
                return None
            self._wakeup.clear()
            # An event queued before the clear is still in the queue
            try:
                return self._queue.get_nowait()
            except queue.Empty:
                pass
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._loop is not None and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._wakeup.set)

    def __repr__(self) -> str:
        return f"<Subscription {self.id} closed={self._closed}>"


class ChangeNotifier:
    """Thread-safe registry of subscriptions with fire-and-forget publish."""

    def __init__(self, max_pending: int = 256):
        self._max_pending = max_pending
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        """
        Register a new subscription.

        Args:
            loop: Event loop that will await the subscription with
                ``next_event``; omit for thread-blocking ``get``
        """
        subscription = Subscription(self._max_pending, loop=loop)
        with self._lock:
            self._subscribers.add(subscription)
        logger.debug(f"Subscribed {subscription.id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Close and remove a subscription. Safe to call more than once."""
        subscription.close()
        with self._lock:
            self._subscribers.discard(subscription)
        logger.debug(f"Unsubscribed {subscription.id}")

    def publish(self, kind: ChangeKind, payload: dict[str, Any]) -> int:
        """
        Deliver an event to every current subscriber.

        Subscribers that are closed or full are dropped. Never raises for a
        delivery failure; an unknown kind is logged and delivered to nobody.

        Args:
            kind: Change kind or its wire name
            payload: JSON-serializable entity view

        Returns:
            Number of subscribers that received the event
        """
        try:
            event = ChangeEvent(ChangeKind(kind), payload)
        except ValueError:
            logger.warning(f"Ignoring publish of unknown change kind {kind!r}")
            return 0
        with self._lock:
            targets = list(self._subscribers)

        delivered = 0
        dropped: list[Subscription] = []
        for subscription in targets:
            try:
                subscription.deliver(event)
                delivered += 1
            except SubscriptionClosed:
                dropped.append(subscription)
            except queue.Full:
                logger.warning(f"Dropping subscriber {subscription.id}: {subscription.pending()} events pending")
                dropped.append(subscription)

        for subscription in dropped:
            self.unsubscribe(subscription)

        logger.debug(f"Published {event.kind.value} to {delivered} subscriber(s)")
        return delivered


_notifier: Optional[ChangeNotifier] = None
_notifier_lock = threading.Lock()


def get_notifier() -> ChangeNotifier:
    """Get the process-wide notifier."""
    global _notifier
    with _notifier_lock:
        if _notifier is None:
            from .config import get_settings
            _notifier = ChangeNotifier(max_pending=get_settings().event_queue_size)
        return _notifier
