"""Fan-out of change notifications to live subscribers.

Each subscriber owns a bounded ``asyncio.Queue`` on the event loop it
subscribed from. Publishing never awaits: events are offered with
``put_nowait`` (or scheduled with ``call_soon_threadsafe`` when publishing
from another thread), and a subscriber whose queue is full or whose loop is
gone is removed instead of slowing everyone else down.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from session_monitor import config
from session_monitor.observability import record_subscriber_drop

logger = logging.getLogger("session_monitor.broadcaster")

_CLOSED = object()


class Subscription:
    """Handle returned by ``EventBroadcaster.subscribe``; iterate it with ``async for``."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue_size: int,
        on_overflow: Callable[["Subscription", str], None],
    ):
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_size))
        self._on_overflow = on_overflow
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _put(self, event: Any) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def _put_from_thread(self, event: Any) -> None:
        if self._closed:
            return
        if not self._put(event):
            self._on_overflow(self, "backpressure")

    def deliver(self, event: Any) -> bool:
        """Offer ``event`` without blocking; False means drop this subscriber."""
        if self._closed:
            return False
        if self._on_loop():
            return self._put(event)
        try:
            self._loop.call_soon_threadsafe(self._put_from_thread, event)
        except RuntimeError:
            # Loop already closed: the consumer is gone.
            return False
        return True

    def _wake(self) -> None:
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # A full queue already guarantees the consumer wakes up.
            pass

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_loop():
            self._wake()
            return
        try:
            self._loop.call_soon_threadsafe(self._wake)
        except RuntimeError:
            pass

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item


class EventBroadcaster:
    """Lock-guarded subscriber registry with copy-on-iterate delivery."""

    def __init__(self, queue_size: int = config.SUBSCRIBER_QUEUE_SIZE):
        self._queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers: dict[int, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        subscription = Subscription(
            loop or asyncio.get_running_loop(),
            self._queue_size,
            self._drop,
        )
        with self._lock:
            self._subscribers[id(subscription)] = subscription
        logger.debug("Subscriber added (%d active)", self.subscriber_count)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscribers.pop(id(subscription), None) is subscription
        subscription.close()
        if removed:
            logger.debug("Subscriber removed (%d active)", self.subscriber_count)

    def _drop(self, subscription: Subscription, reason: str) -> None:
        with self._lock:
            removed = self._subscribers.pop(id(subscription), None) is subscription
        subscription.close()
        if removed:
            logger.info("Dropped subscriber after failed delivery (%s)", reason)
            record_subscriber_drop(reason)

    def publish(self, event: Any) -> int:
        """Deliver ``event`` to every current subscriber; returns the delivery count."""
        with self._lock:
            targets = list(self._subscribers.values())

        delivered = 0
        for subscription in targets:
            try:
                accepted = subscription.deliver(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Subscriber delivery raised: %s", exc)
                accepted = False
            if accepted:
                delivered += 1
            else:
                self._drop(subscription, "delivery_failed")
        return delivered

    def close(self) -> None:
        with self._lock:
            targets = list(self._subscribers.values())
            self._subscribers.clear()
        for subscription in targets:
            subscription.close()
