"""
Event delivery.

The bidding service only ever calls ``publish``; consumers (notification
inboxes, live auction pages) call ``subscribe`` and iterate the returned
subscription. Delivery is best-effort.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict, deque

from redis.asyncio import Redis
from redis.asyncio.client import PubSub

from auction_service.schemas.events import AuctionEvent, Event, event_adapter

logger = logging.getLogger(__name__)


class Subscription(ABC):
    """Async iterator over the events of one topic."""

    def __init__(self, topic: str):
        self.topic = topic

    def __aiter__(self) -> "Subscription":
        return self

    @abstractmethod
    async def __anext__(self) -> Event: ...

    @abstractmethod
    async def unsubscribe(self) -> None: ...

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.unsubscribe()


class Notifier(ABC):
    @abstractmethod
    async def publish(self, event: AuctionEvent) -> None: ...

    @abstractmethod
    async def subscribe(self, topic: str) -> Subscription: ...


# Queued by unsubscribe to wake a consumer blocked on the queue
_CLOSED = object()


class _QueueSubscription(Subscription):
    def __init__(self, notifier: "InMemoryNotifier", topic: str, maxsize: int):
        super().__init__(topic)
        self._notifier = notifier
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def __anext__(self) -> Event:
        if self.closed:
            raise StopAsyncIteration
        event = await self.queue.get()
        if event is _CLOSED:
            raise StopAsyncIteration
        return event

    async def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._notifier._discard(self)
        if self.queue.full():
            # Oldest event gives way to the close marker
            self.queue.get_nowait()
        self.queue.put_nowait(_CLOSED)

    def pending(self) -> list[Event]:
        """Drain whatever is queued without waiting."""
        events = []
        while not self.queue.empty():
            event = self.queue.get_nowait()
            if event is not _CLOSED:
                events.append(event)
        return events


class InMemoryNotifier(Notifier):
    """Fan-out to in-process subscribers, keeping a short history."""

    def __init__(self, queue_size: int = 1000, history_size: int = 1000):
        self._queue_size = queue_size
        self._subscriptions: defaultdict[str, set[_QueueSubscription]] = defaultdict(
            set
        )
        self.history: deque[AuctionEvent] = deque(maxlen=history_size)

    async def publish(self, event: AuctionEvent) -> None:
        self.history.append(event)
        for subscription in list(self._subscriptions.get(event.topic, ())):
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping %s for slow subscriber on %s",
                    type(event).__name__,
                    event.topic,
                )

    async def subscribe(self, topic: str) -> _QueueSubscription:
        subscription = _QueueSubscription(self, topic, self._queue_size)
        self._subscriptions[topic].add(subscription)
        return subscription

    def _discard(self, subscription: _QueueSubscription) -> None:
        subscribers = self._subscriptions.get(subscription.topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscriptions[subscription.topic]


class _RedisSubscription(Subscription):
    def __init__(self, topic: str, pubsub: PubSub, poll_timeout: float):
        super().__init__(topic)
        self._pubsub = pubsub
        self._poll_timeout = poll_timeout
        self._closed = False

    async def __anext__(self) -> Event:
        while not self._closed:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=self._poll_timeout
            )
            if message is None or message.get("type") != "message":
                continue
            return event_adapter.validate_json(message["data"])
        raise StopAsyncIteration

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pubsub.unsubscribe()
        await self._pubsub.aclose()


class RedisNotifier(Notifier):
    """Publishes JSON events on Redis pub/sub channels, one channel per topic."""

    def __init__(
        self,
        redis: Redis,
        channel_prefix: str = "auction-events:",
        poll_timeout: float = 1.0,
    ):
        self._redis = redis
        self._channel_prefix = channel_prefix
        self._poll_timeout = poll_timeout

    def channel(self, topic: str) -> str:
        return f"{self._channel_prefix}{topic}"

    async def publish(self, event: AuctionEvent) -> None:
        await self._redis.publish(self.channel(event.topic), event.model_dump_json())

    async def subscribe(self, topic: str) -> Subscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel(topic))
        return _RedisSubscription(topic, pubsub, self._poll_timeout)
