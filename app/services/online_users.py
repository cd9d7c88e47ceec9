"""
Online user tracking.

Folds OnlineUserEvents into a live table of sessions, one per user, and
reports how many users are online and how many are stale.

- online: the user's latest session token has not expired yet
- stale: the user's latest session started more than stale_after ago
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import AsyncIterable, AsyncIterator, Callable, Dict, Optional, Union

from app.config import settings
from app.models.events import OnlineUserEvent, OnlineUserMetrics, Operation

logger = logging.getLogger(__name__)


class OnlineUserTracker:
    """
    In-memory session table keyed by user UUID.

    The table is not persisted; it is rebuilt from the event stream (a source
    snapshot replays every current row as a snapshot operation).
    """

    def __init__(
        self,
        stale_after: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            stale_after: Session age that makes a user stale
                         (default: settings.ONLINE_USER_STALE_AFTER_DAYS)
            clock: Returns the current time
        """
        if stale_after is None:
            stale_after = timedelta(days=settings.ONLINE_USER_STALE_AFTER_DAYS)
        self._stale_after = stale_after
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sessions: Dict[str, OnlineUserEvent] = {}

    @property
    def tracked_users(self) -> int:
        return len(self._sessions)

    def apply(self, event: OnlineUserEvent) -> None:
        """
        Apply one session event.

        A delete removes the user's session if it is the one being tracked;
        anything else replaces it.
        """
        if event.operation == Operation.DELETE.value:
            current = self._sessions.get(event.user_uuid)
            if current is not None and current.jti == event.jti:
                del self._sessions[event.user_uuid]
            return

        self._sessions[event.user_uuid] = event

    def snapshot(self) -> OnlineUserMetrics:
        """Count online and stale users as of now."""
        now = self._clock()
        stale_before = now - self._stale_after

        online = 0
        stale = 0
        for session in self._sessions.values():
            if session.token_expiration > now:
                online += 1
            if session.online_start < stale_before:
                stale += 1

        return OnlineUserMetrics(
            online_user_count=online,
            stale_user_count=stale,
            observed_at=now,
        )

    async def track(
        self,
        events: AsyncIterable[OnlineUserEvent],
        interval: Union[timedelta, float],
    ) -> AsyncIterator[OnlineUserMetrics]:
        """
        Apply events as they arrive and yield a snapshot every interval.

        A final snapshot is yielded when the upstream stream ends.
        """
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        if seconds <= 0:
            raise ValueError("interval must be positive")

        async def consume() -> None:
            async for event in events:
                self.apply(event)

        consumer = asyncio.create_task(consume())
        try:
            while True:
                done, _ = await asyncio.wait({consumer}, timeout=seconds)
                yield self.snapshot()
                if done:
                    consumer.result()
                    return
        finally:
            if not consumer.done():
                consumer.cancel()
