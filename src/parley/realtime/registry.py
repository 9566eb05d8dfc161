"""Live feed registry - in-process topic fan-out to open subscriptions.

Learn: this replaces a pub/sub server for the last hop. Every WebSocket
subscription owns a bounded asyncio.Queue; publish() drops a copy of the
payload into each queue of the topic and returns immediately. Nothing is
retained for topics nobody listens to, so a publish with no subscribers is
a no-op, not a backlog.

All state is touched only from the event loop thread, synchronously, so
there are no locks. Ordering is FIFO per topic; nothing is promised across
topics.

Lifecycle of a subscription:
    sub = registry.subscribe(topic)   registered right away
    async for payload in sub: ...     waits for publishes
    sub.close()                       unregisters, ends iteration
"""

import asyncio
import copy
from typing import Any, Optional

import structlog

logger = structlog.get_logger()

_CLOSED = object()


class Subscription:
    """One listener on one topic. Async iterator and async context manager."""

    def __init__(self, registry: "LiveFeedRegistry", topic: str, max_pending: int):
        self.registry = registry
        self.topic = topic
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, payload: Any) -> bool:
        """Enqueue without waiting. False if closed or the buffer is full."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.registry._discard(self)
        # A full queue means nobody is blocked in get()
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"pending={self.pending}"
        return f"<Subscription {self.topic} {state}>"


class LiveFeedRegistry:
    """Topic name -> open subscriptions."""

    def __init__(self, max_pending: int = 1000):
        self.max_pending = max_pending
        self._topics: dict[str, list[Subscription]] = {}

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(self, topic, self.max_pending)
        self._topics.setdefault(topic, []).append(subscription)
        logger.debug("feed.subscribed", topic=topic, subscribers=len(self._topics[topic]))
        return subscription

    def publish(self, topic: str, payload: Any) -> int:
        """Hand `payload` to every current subscriber of `topic`.

        Returns how many subscribers received it. Never raises and never
        waits: a subscriber whose buffer is full is closed and skipped.
        """
        subscribers = self._topics.get(topic)
        if not subscribers:
            return 0

        reached = 0
        for subscription in list(subscribers):
            if subscription.offer(copy.deepcopy(payload)):
                reached += 1
                continue
            logger.warning(
                "feed.subscriber_dropped",
                topic=topic,
                pending=subscription.pending,
            )
            subscription.close()
        return reached

    def teardown(self) -> None:
        """Close every subscription and forget every topic."""
        count = 0
        for subscribers in list(self._topics.values()):
            for subscription in list(subscribers):
                subscription.close()
                count += 1
        self._topics.clear()
        if count:
            logger.info("feed.teardown", closed=count)

    def topics(self) -> list[str]:
        return sorted(self._topics)

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        if topic is not None:
            return len(self._topics.get(topic, ()))
        return sum(len(subs) for subs in self._topics.values())

    def _discard(self, subscription: Subscription) -> None:
        subscribers = self._topics.get(subscription.topic)
        if not subscribers:
            return
        try:
            subscribers.remove(subscription)
        except ValueError:
            return
        if not subscribers:
            del self._topics[subscription.topic]
