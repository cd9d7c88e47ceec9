"""
Bounded multi-consumer broadcast channel.

This module provides a one-producer, many-consumer channel for asyncio code.
Every item published is handed to each subscription registered at that moment;
subscriptions come and go at any time and never see items published before
they joined.

Each subscription owns:
- A bounded asyncio.Queue (the delivery buffer the consumer reads from)
- A bounded overflow deque, filled only while the delivery buffer is full

publish() never awaits. When both buffers of a subscription are full the new
item is dropped for that subscription only (drop-new), so everything that is
retained stays in publish order.

Thread-Safety: Not thread-safe. Producer and consumers must share one event loop.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Generic, Optional, TypeVar
from uuid import uuid4

from core.exceptions import HubClosedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Wakes a consumer blocked on an empty queue when its subscription closes
_CLOSED = object()

# Log every Nth drop of a subscription after the first
DROP_LOG_INTERVAL = 1000


class Subscription(Generic[T]):
    """
    One consumer's view of a BroadcastChannel.

    Iterate it with ``async for``; iteration ends when the subscription is
    cancelled or the channel shuts down. Use it as an async context manager to
    unsubscribe automatically.

    Usage:
        async with channel.subscribe() as events:
            async for event in events:
                handle(event)
    """

    def __init__(
        self,
        channel: "BroadcastChannel[T]",
        queue_size: int,
        overflow_capacity: int,
    ):
        self.subscription_id = str(uuid4())
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._overflow: Deque[T] = deque()
        self._overflow_capacity = overflow_capacity
        self._closed = False

        # Backpressure signal: True while events wait in the overflow buffer
        self.lagging = False

        self.delivered = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events buffered for this subscriber and not yet consumed."""
        return self._queue.qsize() + len(self._overflow)

    def offer(self, item: T) -> bool:
        """
        Hand an item to this subscription without waiting.

        Returns:
            True if the item was buffered, False if it was dropped.
        """
        if self._closed:
            return False

        # Overflow must drain first, otherwise a newer item would overtake it
        if not self._overflow and not self._queue.full():
            self._queue.put_nowait(item)
            return True

        if len(self._overflow) < self._overflow_capacity:
            self._overflow.append(item)
            if not self.lagging:
                self.lagging = True
                logger.info(
                    f"Subscriber {self.subscription_id} on '{self._channel.name}' "
                    f"is lagging, buffering on its behalf"
                )
            return True

        self.dropped += 1
        return False

    def _refill(self) -> None:
        """Move overflowed items into the delivery queue as space frees up."""
        while self._overflow and not self._queue.full():
            self._queue.put_nowait(self._overflow.popleft())
        if not self._overflow and self.lagging:
            self.lagging = False
            logger.info(
                f"Subscriber {self.subscription_id} on '{self._channel.name}' caught up"
            )

    def _close(self, discard_pending: bool) -> None:
        if self._closed:
            return
        self._closed = True

        if discard_pending:
            self._overflow.clear()
            while not self._queue.empty():
                self._queue.get_nowait()

        # A consumer can only be blocked when the queue is empty, so the
        # marker always fits when it is needed
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    def unsubscribe(self) -> None:
        """
        Stop receiving events and release buffered ones.

        Safe to call more than once. A consumer blocked in ``async for`` wakes
        up and its loop ends.
        """
        self._channel.unsubscribe(self)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration

        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration

        self._refill()
        self.delivered += 1
        return item

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unsubscribe()

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "delivered": self.delivered,
            "dropped": self.dropped,
            "pending": self.pending,
            "lagging": self.lagging,
        }


class BroadcastChannel(Generic[T]):
    """
    Multicast channel with per-subscriber bounded buffering.

    Args:
        name: Channel name used in logs and statistics
        queue_size: Capacity of each subscriber's delivery queue
        overflow_capacity: Items held per lagging subscriber beyond the queue
        on_drop: Optional callback invoked as on_drop(subscription, item)
                 whenever an item is dropped for a subscriber

    Example:
        channel = BroadcastChannel("prices", queue_size=16)
        subscription = channel.subscribe()
        channel.publish(42)
        assert await subscription.__anext__() == 42
    """

    def __init__(
        self,
        name: str,
        queue_size: int = 256,
        overflow_capacity: int = 1024,
        on_drop: Optional[Callable[[Subscription[T], T], None]] = None,
    ):
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        if overflow_capacity < 0:
            raise ValueError("overflow_capacity cannot be negative")

        self.name = name
        self._queue_size = queue_size
        self._overflow_capacity = overflow_capacity
        self._on_drop = on_drop
        self._subscriptions: Dict[str, Subscription[T]] = {}
        self._closed = False

        # Statistics
        self._total_published = 0
        self._total_dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> Subscription[T]:
        """
        Register a new subscriber.

        Returns:
            Subscription yielding every item published from now on.

        Raises:
            HubClosedError: If the channel has been shut down.
        """
        if self._closed:
            raise HubClosedError(
                "Cannot subscribe to a closed channel", {"channel": self.name}
            )

        subscription: Subscription[T] = Subscription(
            self, self._queue_size, self._overflow_capacity
        )
        self._subscriptions[subscription.subscription_id] = subscription
        logger.info(
            f"Subscribed {subscription.subscription_id} to '{self.name}', "
            f"subscribers: {len(self._subscriptions)}"
        )
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> None:
        """Deregister a subscriber and discard its buffered items."""
        removed = self._subscriptions.pop(subscription.subscription_id, None)
        subscription._close(discard_pending=True)
        if removed is not None:
            logger.info(
                f"Unsubscribed {subscription.subscription_id} from '{self.name}', "
                f"subscribers: {len(self._subscriptions)}"
            )

    def publish(self, item: T) -> int:
        """
        Deliver an item to every current subscriber without blocking.

        Args:
            item: The item to broadcast

        Returns:
            Number of subscribers the item was buffered for.
        """
        if self._closed:
            logger.debug(f"Ignoring publish on closed channel '{self.name}'")
            return 0

        self._total_published += 1
        accepted = 0

        for subscription in list(self._subscriptions.values()):
            if subscription.offer(item):
                accepted += 1
                continue

            self._total_dropped += 1
            if subscription.dropped == 1 or subscription.dropped % DROP_LOG_INTERVAL == 0:
                logger.warning(
                    f"Dropped event on '{self.name}' for slow subscriber "
                    f"{subscription.subscription_id} "
                    f"(dropped so far: {subscription.dropped})",
                    extra={"subscriber_id": subscription.subscription_id},
                )
            if self._on_drop is not None:
                self._on_drop(subscription, item)

        return accepted

    def close(self) -> None:
        """
        Shut the channel down.

        Subscribers still receive what is already buffered for them, then
        their iteration ends. Idempotent.
        """
        if self._closed:
            return
        self._closed = True

        for subscription in self._subscriptions.values():
            subscription._close(discard_pending=False)
        self._subscriptions.clear()

        logger.info(f"Channel '{self.name}' closed")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get channel statistics.

        Returns:
            Dictionary with statistics:
            - total_published: Items published while open
            - total_dropped: Per-subscriber drops across all subscribers
            - subscriber_count: Active subscribers
            - lagging_subscribers: Subscribers currently using overflow
            - closed: Whether the channel has shut down
        """
        return {
            "total_published": self._total_published,
            "total_dropped": self._total_dropped,
            "subscriber_count": len(self._subscriptions),
            "lagging_subscribers": sum(
                1 for s in self._subscriptions.values() if s.lagging
            ),
            "closed": self._closed,
        }
