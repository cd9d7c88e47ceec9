"""
Time-windowed aggregation of authenticator metric events.

Windows are processing-time windows: they start when aggregation starts and
close on a wall-clock timer, whether or not events arrive. Event timestamps
play no part in window assignment.

Per aggregation run:
    Collecting(window) -> timer fires -> Reducing -> emit or suppress
    -> Collecting(next window)

The aggregation generator is the only owner of the timer. Event consumption
runs in a separate task that appends to the current accumulator; closing a
window swaps in a fresh accumulator before reducing the old one.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import AsyncIterable, AsyncIterator, Callable, Dict, List, Optional, Union

from app.api import metrics as pipeline_metrics
from app.models.events import AggregateSummary, AuthenticatorMetricEvent

logger = logging.getLogger(__name__)

# group_key of a summary that covers every authenticator
ALL_AUTHENTICATORS = "*"


class _Accumulator:
    """Events collected for the window that is currently open."""

    def __init__(self):
        self._events: List[AuthenticatorMetricEvent] = []

    def add(self, event: AuthenticatorMetricEvent) -> None:
        self._events.append(event)

    def swap(self) -> List[AuthenticatorMetricEvent]:
        """Return the collected events and start an empty window."""
        events, self._events = self._events, []
        return events


def _to_seconds(duration: Union[timedelta, float, int]) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


class MetricAggregationService:
    """
    Aggregates authenticator metric events into fixed time windows.

    Usage:
        service = MetricAggregationService()
        async with hub.subscribe_authenticator_events() as events:
            async for summary in service.aggregate_by_window(events, timedelta(seconds=10)):
                print(summary.sign_in_user_count)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            clock: Wall clock used to label window bounds
        """
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def aggregate_by_window(
        self,
        events: AsyncIterable[AuthenticatorMetricEvent],
        window_duration: Union[timedelta, float],
        group_by_authenticator: bool = False,
    ) -> AsyncIterator[AggregateSummary]:
        """
        Aggregate a stream of events into consecutive non-overlapping windows.

        Args:
            events: Source stream, typically a hub subscription
            window_duration: Window length (timedelta or seconds)
            group_by_authenticator: One summary per authenticator per window
                                    instead of one per window

        Yields:
            AggregateSummary for every window (or group) whose sign-in sum is
            positive. Empty windows yield nothing.

        Raises:
            ValueError: If window_duration is not positive.
            Exception: Whatever the upstream stream raised, after the partial
                window has been flushed.
        """
        window_seconds = _to_seconds(window_duration)
        if window_seconds <= 0:
            raise ValueError("window_duration must be positive")

        loop = asyncio.get_running_loop()
        accumulator = _Accumulator()
        consumer = asyncio.create_task(self._consume(events, accumulator))

        started = loop.time()
        window_start = self._clock()
        window_index = 0

        logger.info(f"Aggregation started with {window_seconds}s windows")

        try:
            while True:
                # Deadlines come from the start time so windows do not drift
                deadline = started + (window_index + 1) * window_seconds
                timeout = max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait({consumer}, timeout=timeout)

                if done:
                    window_end = self._clock()
                    for summary in self._reduce(
                        accumulator.swap(), window_start, window_end, group_by_authenticator
                    ):
                        yield summary
                    # Re-raise an upstream failure now that the window is flushed
                    consumer.result()
                    logger.info("Aggregation finished: upstream stream ended")
                    return

                window_end = window_start + timedelta(seconds=window_seconds)
                for summary in self._reduce(
                    accumulator.swap(), window_start, window_end, group_by_authenticator
                ):
                    yield summary

                window_start = window_end
                window_index += 1
        finally:
            if not consumer.done():
                consumer.cancel()

    @staticmethod
    async def _consume(
        events: AsyncIterable[AuthenticatorMetricEvent], accumulator: _Accumulator
    ) -> None:
        async for event in events:
            accumulator.add(event)

    def _reduce(
        self,
        events: List[AuthenticatorMetricEvent],
        window_start: datetime,
        window_end: datetime,
        group_by_authenticator: bool,
    ) -> List[AggregateSummary]:
        """
        Reduce one closed window.

        sign_in_user_count is summed as the authoritative aggregate; groups
        whose sum is not positive are suppressed.
        """
        if not events:
            pipeline_metrics.aggregation_windows_total.labels("empty").inc()
            return []

        groups: Dict[str, List[AuthenticatorMetricEvent]] = {}
        if group_by_authenticator:
            for event in events:
                groups.setdefault(event.authenticator, []).append(event)
        else:
            groups[ALL_AUTHENTICATORS] = events

        summaries = []
        for group_key, group in groups.items():
            sign_in = sum(event.sign_in_user_count for event in group)
            if sign_in <= 0:
                pipeline_metrics.aggregation_windows_total.labels("suppressed").inc()
                logger.debug(
                    f"Suppressed window {window_start.isoformat()} for '{group_key}': "
                    f"sign-in sum {sign_in}"
                )
                continue

            summaries.append(
                AggregateSummary(
                    group_key=group_key,
                    sign_in_user_count=sign_in,
                    sign_off_user_count=sum(event.sign_off_user_count for event in group),
                    event_count=len(group),
                    window_start=window_start,
                    window_end=window_end,
                )
            )
            pipeline_metrics.aggregation_windows_total.labels("emitted").inc()

        return summaries
