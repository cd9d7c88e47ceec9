"""
Broadcast hub for typed change data capture events.

The hub decouples the dispatcher (single producer) from any number of
subscribers per event category. Each category is an independent
BroadcastChannel; they share no state.

Delivery rules:
- publish() never blocks the publisher
- New subscribers only see events published after they subscribed
- A slow subscriber lags into its overflow buffer, then loses new events;
  other subscribers are unaffected
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Union

from app.api import metrics as pipeline_metrics
from app.config import settings
from app.models.events import AuthenticatorMetricEvent, OnlineUserEvent
from infrastructure.concurrency.broadcast import BroadcastChannel, Subscription

logger = logging.getLogger(__name__)

TypedEvent = Union[AuthenticatorMetricEvent, OnlineUserEvent]


class EventCategory(Enum):
    """Broadcast channels exposed by the hub."""

    AUTHENTICATOR_METRICS = "authenticator_metrics"
    ONLINE_USERS = "online_users"


_CATEGORY_BY_TYPE = {
    AuthenticatorMetricEvent: EventCategory.AUTHENTICATOR_METRICS,
    OnlineUserEvent: EventCategory.ONLINE_USERS,
}


class BroadcastHub:
    """
    In-memory multicast hub with one channel per event category.

    Usage:
        hub = BroadcastHub()

        async with hub.subscribe_authenticator_events() as events:
            async for event in events:
                print(event.sign_in_user_count)

        # elsewhere, from the dispatcher
        hub.publish(event)

    Thread-Safety: Uses asyncio, safe for async operations in same event loop.
    """

    def __init__(
        self,
        queue_size: Optional[int] = None,
        overflow_capacity: Optional[int] = None,
    ):
        """
        Initialize the hub.

        Args:
            queue_size: Per-subscriber delivery queue size
                        (default: settings.HUB_SUBSCRIBER_QUEUE_SIZE)
            overflow_capacity: Per-subscriber overflow buffer
                               (default: settings.HUB_OVERFLOW_CAPACITY)
        """
        if queue_size is None:
            queue_size = settings.HUB_SUBSCRIBER_QUEUE_SIZE
        if overflow_capacity is None:
            overflow_capacity = settings.HUB_OVERFLOW_CAPACITY

        self._channels: Dict[EventCategory, BroadcastChannel] = {}
        for category in EventCategory:
            channel = BroadcastChannel(
                category.value,
                queue_size=queue_size,
                overflow_capacity=overflow_capacity,
                on_drop=self._drop_counter(category),
            )
            self._channels[category] = channel
            pipeline_metrics.hub_subscribers.labels(category.value).set_function(
                lambda channel=channel: channel.subscriber_count
            )

        self._closed = False

        logger.info(
            f"BroadcastHub initialized (queue_size={queue_size}, "
            f"overflow_capacity={overflow_capacity})"
        )

    @staticmethod
    def _drop_counter(category: EventCategory):
        counter = pipeline_metrics.hub_events_dropped_total.labels(category.value)

        def on_drop(subscription: Subscription, event: Any) -> None:
            counter.inc()

        return on_drop

    @property
    def closed(self) -> bool:
        return self._closed

    def channel(self, category: EventCategory) -> BroadcastChannel:
        """Get the underlying channel for a category."""
        return self._channels[category]

    def publish(self, event: TypedEvent) -> int:
        """
        Publish an event to all current subscribers of its category.

        Args:
            event: AuthenticatorMetricEvent or OnlineUserEvent

        Returns:
            Number of subscribers the event was buffered for.

        Raises:
            TypeError: If the event type has no channel.
        """
        category = _CATEGORY_BY_TYPE.get(type(event))
        if category is None:
            raise TypeError(f"No broadcast channel for {type(event).__name__}")

        channel = self._channels[category]
        accepted = channel.publish(event)
        pipeline_metrics.hub_events_published_total.labels(category.value).inc()

        logger.debug(
            f"Published {category.value} event {event.id} to "
            f"{accepted}/{channel.subscriber_count} subscribers"
        )
        return accepted

    def publish_authenticator_event(self, event: AuthenticatorMetricEvent) -> int:
        return self.publish(event)

    def publish_online_user_event(self, event: OnlineUserEvent) -> int:
        return self.publish(event)

    def subscribe(self, category: EventCategory) -> Subscription:
        """
        Subscribe to a category.

        Returns:
            Open-ended stream of events published from now on.

        Raises:
            HubClosedError: If the hub has been shut down.
        """
        return self._channels[category].subscribe()

    def subscribe_authenticator_events(self) -> Subscription:
        return self.subscribe(EventCategory.AUTHENTICATOR_METRICS)

    def subscribe_online_user_events(self) -> Subscription:
        return self.subscribe(EventCategory.ONLINE_USERS)

    def close(self) -> None:
        """
        Shut the hub down, ending every subscriber's stream.

        Idempotent.
        """
        if self._closed:
            return

        logger.info("Closing BroadcastHub...")
        self._closed = True
        for channel in self._channels.values():
            channel.close()
        logger.info("BroadcastHub closed")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get hub statistics.

        Returns:
            Dictionary keyed by category value with each channel's statistics,
            plus "closed".
        """
        stats: Dict[str, Any] = {
            category.value: channel.get_statistics()
            for category, channel in self._channels.items()
        }
        stats["closed"] = self._closed
        return stats


# Global hub instance (singleton)
_global_event_hub: Optional[BroadcastHub] = None


def get_event_hub() -> BroadcastHub:
    """
    Get the global broadcast hub instance.

    Creates the instance on first call (singleton pattern).

    Returns:
        The global BroadcastHub instance
    """
    global _global_event_hub
    if _global_event_hub is None:
        _global_event_hub = BroadcastHub()
    return _global_event_hub


def reset_event_hub() -> None:
    """Close and forget the global hub (used between application runs)."""
    global _global_event_hub
    if _global_event_hub is not None:
        _global_event_hub.close()
    _global_event_hub = None
