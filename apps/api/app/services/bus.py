"""In-memory publish/subscribe bus for live call events.

Delivery is best effort: a message reaches the subscribers registered when it
is published and nobody else. Each subscription drains its own bounded queue
in a dedicated task, so messages on a topic arrive in publish order and a slow
viewer only ever loses its own backlog.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Literal
from uuid import uuid4

from .registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

Message = dict[str, Any]
Callback = Callable[[Message], Awaitable[None] | None]
OverflowPolicy = Literal["drop_oldest", "drop_newest"]

_CLOSE = object()


class Subscription:
    """One callback's interest in one topic."""

    def __init__(
        self,
        bus: "EventBus",
        topic: str,
        callback: Callback,
        *,
        connection_id: str | None,
        queue_size: int,
        overflow_policy: OverflowPolicy,
    ) -> None:
        self.id = uuid4().hex
        self.topic = topic
        self.connection_id = connection_id
        self.dropped = 0
        self.delivered = 0
        self._bus = bus
        self._callback = callback
        self._overflow_policy = overflow_policy
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return not self._closed

    def unsubscribe(self) -> None:
        """Stop deliveries; calling it again is a no-op."""

        self._bus._detach(self)

    def _start(self) -> None:
        if self._closed:
            return
        self._task = asyncio.create_task(self._pump(), name=f"bus-subscriber-{self.topic}-{self.id[:8]}")

    def _offer(self, message: Message) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            self._bus._stats["dropped"] += 1
            if self._overflow_policy == "drop_newest":
                logger.warning("Subscriber queue full on %s; dropping newest message", self.topic)
                return False
            self._queue.get_nowait()
            self._queue.task_done()
            self._queue.put_nowait(message)
            logger.warning("Subscriber queue full on %s; dropped oldest message", self.topic)
            return True

    def _close(self) -> None:
        self._closed = True
        if self._task is None or self._task.done():
            return
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
        self._queue.put_nowait(_CLOSE)

    async def _drained(self) -> None:
        await self._queue.join()

    async def _pump(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if message is _CLOSE or self._closed:
                    return
                result = self._callback(message)
                if inspect.isawaitable(result):
                    await result
                self.delivered += 1
                self._bus._stats["delivered"] += 1
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001 - one broken viewer must not stop the pump
                logger.exception("Subscriber callback failed on topic %s", self.topic)
            finally:
                self._queue.task_done()


class EventBus:
    """Fan published messages out to per-topic subscribers."""

    def __init__(self, *, queue_size: int = 100, overflow_policy: OverflowPolicy = "drop_oldest") -> None:
        self._queue_size = queue_size
        self._overflow_policy = overflow_policy
        self._registry: SubscriptionRegistry[Subscription] = SubscriptionRegistry()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._stats = {"published": 0, "offered": 0, "delivered": 0, "dropped": 0}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Bind the bus to the running event loop."""

        self._loop = asyncio.get_running_loop()
        self._running = True
        logger.info("Event bus started")

    async def shutdown(self, *, timeout: float = 1.0) -> None:
        """Give queued messages a moment to drain, then stop every subscriber."""

        if not self._running:
            return
        self._running = False
        subscriptions = self._registry.clear()
        if subscriptions:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(sub._drained() for sub in subscriptions)), timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Event bus shutdown timed out with undelivered messages")
        tasks = []
        for subscription in subscriptions:
            subscription._close()
            if subscription._task is not None and not subscription._task.done():
                subscription._task.cancel()
                tasks.append(subscription._task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Event bus stopped")

    def publish(self, topic: str, payload: Message) -> int:
        """Offer ``payload`` to every current subscriber of ``topic``.

        Never blocks. Returns how many subscribers the message was offered to.
        May be called from another thread; delivery is then scheduled on the
        bus loop.
        """

        if not self._running or self._loop is None:
            logger.debug("Bus not running; dropping message for %s", topic)
            return 0
        self._stats["published"] += 1
        if not self._on_loop():
            self._loop.call_soon_threadsafe(self._dispatch, topic, payload)
            return self._registry.count(topic)
        return self._dispatch(topic, payload)

    def subscribe(self, topic: str, callback: Callback, *, connection_id: str | None = None) -> Subscription:
        """Register ``callback`` for ``topic`` and return its handle."""

        if not self._running or self._loop is None:
            raise RuntimeError("Event bus is not running")
        subscription = Subscription(
            self,
            topic,
            callback,
            connection_id=connection_id,
            queue_size=self._queue_size,
            overflow_policy=self._overflow_policy,
        )
        if self._on_loop():
            subscription._start()
        else:
            self._loop.call_soon_threadsafe(subscription._start)
        self._registry.add(subscription)
        logger.debug("Subscribed %s to %s", connection_id or subscription.id, topic)
        return subscription

    def unsubscribe_all(self, connection_id: str) -> int:
        """Tear down every subscription owned by a connection."""

        removed = self._registry.remove_connection(connection_id)
        for subscription in removed:
            self._close(subscription)
        if removed:
            logger.debug("Removed %d subscription(s) for connection %s", len(removed), connection_id)
        return len(removed)

    def subscriber_count(self, topic: str) -> int:
        return self._registry.count(topic)

    def connection_topics(self, connection_id: str) -> set[str]:
        return self._registry.connection_topics(connection_id)

    def connection_subscription_count(self, connection_id: str) -> int:
        return self._registry.connection_count(connection_id)

    def stats(self) -> dict[str, int]:
        return {**self._stats, "subscriptions": len(self._registry)}

    async def flush(self) -> None:
        """Wait until every live subscriber has processed its queue."""

        pending = [
            subscription._drained()
            for topic in self._registry.topics()
            for subscription in self._registry.subscribers(topic)
        ]
        await asyncio.gather(*pending)

    def _dispatch(self, topic: str, payload: Message) -> int:
        offered = 0
        for subscription in self._registry.subscribers(topic):
            if subscription._offer(payload):
                offered += 1
        self._stats["offered"] += offered
        return offered

    def _detach(self, subscription: Subscription) -> None:
        if self._registry.remove(subscription.id) is not None:
            self._close(subscription)

    def _close(self, subscription: Subscription) -> None:
        subscription._closed = True
        if self._on_loop() or self._loop is None:
            subscription._close()
        else:
            self._loop.call_soon_threadsafe(subscription._close)

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False
