"""
Test suite for infrastructure/concurrency/broadcast.py

Coverage targets:
- Fan-out to every current subscriber
- No replay for late subscribers
- Bounded buffering, lag signalling and drop-new overflow
- Per-subscriber isolation
- Unsubscribe and channel shutdown semantics
"""

import asyncio

import pytest

from core.exceptions import HubClosedError
from infrastructure.concurrency.broadcast import BroadcastChannel


async def drain(subscription):
    return [item async for item in subscription]


@pytest.mark.unit
class TestBroadcastChannelCreation:
    """Test channel construction."""

    def test_defaults(self):
        channel = BroadcastChannel("test")

        assert channel.name == "test"
        assert channel.subscriber_count == 0
        assert channel.closed is False

    def test_rejects_zero_queue(self):
        with pytest.raises(ValueError):
            BroadcastChannel("test", queue_size=0)

    def test_rejects_negative_overflow(self):
        with pytest.raises(ValueError):
            BroadcastChannel("test", overflow_capacity=-1)


@pytest.mark.unit
class TestPublishSubscribe:
    """Test delivery to subscribers."""

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        """Publishing with nobody listening is not an error."""
        channel = BroadcastChannel("test")

        assert channel.publish(1) == 0
        assert channel.get_statistics()["total_published"] == 1

    @pytest.mark.asyncio
    async def test_fan_out_to_all_subscribers(self):
        channel = BroadcastChannel("test")
        first = channel.subscribe()
        second = channel.subscribe()

        assert channel.publish("a") == 2
        assert channel.publish("b") == 2
        channel.close()

        assert await drain(first) == ["a", "b"]
        assert await drain(second) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_late_subscriber_sees_no_history(self):
        channel = BroadcastChannel("test")
        channel.publish("before")

        subscription = channel.subscribe()
        channel.publish("after")
        channel.close()

        assert await drain(subscription) == ["after"]

    @pytest.mark.asyncio
    async def test_consumer_waits_for_items(self):
        channel = BroadcastChannel("test")
        subscription = channel.subscribe()

        pending = asyncio.create_task(subscription.__anext__())
        await asyncio.sleep(0)
        assert not pending.done()

        channel.publish(42)
        assert await asyncio.wait_for(pending, timeout=1.0) == 42
        assert subscription.delivered == 1


@pytest.mark.unit
class TestOverflow:
    """Test bounded buffering of slow subscribers."""

    @pytest.mark.asyncio
    async def test_overflow_then_drop_new(self):
        """Beyond queue and overflow, new items are dropped in order."""
        channel = BroadcastChannel("test", queue_size=2, overflow_capacity=2)
        subscription = channel.subscribe()

        accepted = [channel.publish(i) for i in range(1, 7)]

        assert accepted == [1, 1, 1, 1, 0, 0]
        assert subscription.lagging is True
        assert subscription.dropped == 2
        assert subscription.pending == 4
        assert channel.get_statistics()["total_dropped"] == 2
        assert channel.get_statistics()["lagging_subscribers"] == 1

    @pytest.mark.asyncio
    async def test_lagging_clears_after_catching_up(self):
        channel = BroadcastChannel("test", queue_size=2, overflow_capacity=2)
        subscription = channel.subscribe()
        for i in range(1, 5):
            channel.publish(i)

        received = [await subscription.__anext__() for _ in range(4)]

        assert received == [1, 2, 3, 4]
        assert subscription.lagging is False
        assert subscription.pending == 0

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_affect_others(self):
        channel = BroadcastChannel("test", queue_size=1, overflow_capacity=0)
        slow = channel.subscribe()
        fast = channel.subscribe()

        received = []
        for i in range(5):
            channel.publish(i)
            received.append(await fast.__anext__())

        assert received == [0, 1, 2, 3, 4]
        assert fast.dropped == 0
        assert slow.dropped == 4

        channel.close()
        assert await drain(slow) == [0]

    @pytest.mark.asyncio
    async def test_on_drop_callback(self):
        drops = []
        channel = BroadcastChannel(
            "test",
            queue_size=1,
            overflow_capacity=0,
            on_drop=lambda subscription, item: drops.append(item),
        )
        channel.subscribe()

        channel.publish("kept")
        channel.publish("lost")

        assert drops == ["lost"]


@pytest.mark.unit
class TestLifecycle:
    """Test unsubscribe and close."""

    @pytest.mark.asyncio
    async def test_unsubscribe_discards_pending(self):
        channel = BroadcastChannel("test")
        subscription = channel.subscribe()
        channel.publish(1)

        subscription.unsubscribe()

        assert channel.subscriber_count == 0
        assert await drain(subscription) == []

    @pytest.mark.asyncio
    async def test_unsubscribe_twice(self):
        channel = BroadcastChannel("test")
        subscription = channel.subscribe()

        subscription.unsubscribe()
        subscription.unsubscribe()

        assert subscription.closed is True

    @pytest.mark.asyncio
    async def test_unsubscribed_receives_nothing_new(self):
        channel = BroadcastChannel("test")
        gone = channel.subscribe()
        stays = channel.subscribe()
        gone.unsubscribe()

        assert channel.publish("x") == 1
        channel.close()
        assert await drain(stays) == ["x"]

    @pytest.mark.asyncio
    async def test_context_manager_unsubscribes(self):
        channel = BroadcastChannel("test")

        async with channel.subscribe() as subscription:
            assert channel.subscriber_count == 1

        assert subscription.closed is True
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_wakes_blocked_consumer(self):
        channel = BroadcastChannel("test")
        subscription = channel.subscribe()

        consumer = asyncio.create_task(drain(subscription))
        await asyncio.sleep(0)
        subscription.unsubscribe()

        assert await asyncio.wait_for(consumer, timeout=1.0) == []

    @pytest.mark.asyncio
    async def test_close_delivers_buffered_then_ends(self):
        channel = BroadcastChannel("test", queue_size=2, overflow_capacity=2)
        subscription = channel.subscribe()
        for i in range(4):
            channel.publish(i)

        channel.close()

        assert await drain(subscription) == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_close_wakes_blocked_consumer(self):
        channel = BroadcastChannel("test")
        subscription = channel.subscribe()

        consumer = asyncio.create_task(drain(subscription))
        await asyncio.sleep(0)
        channel.close()

        assert await asyncio.wait_for(consumer, timeout=1.0) == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        channel = BroadcastChannel("test")
        channel.close()
        channel.close()

        assert channel.closed is True

    @pytest.mark.asyncio
    async def test_subscribe_after_close_raises(self):
        channel = BroadcastChannel("test")
        channel.close()

        with pytest.raises(HubClosedError):
            channel.subscribe()

    @pytest.mark.asyncio
    async def test_publish_after_close_is_ignored(self):
        channel = BroadcastChannel("test")
        channel.close()

        assert channel.publish(1) == 0
        assert channel.get_statistics()["total_published"] == 0
