"""
In-memory change record source.

Records are fed programmatically. Used when no change log is configured and
for driving the pipeline in tests.
"""

import asyncio
from typing import AsyncIterator, Union

from app.models.events import ChangeRecord
from infrastructure.sources.base import ChangeRecordSource

_END = object()


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


class InMemoryChangeSource(ChangeRecordSource):
    """
    Source backed by an asyncio.Queue.

    Usage:
        source = InMemoryChangeSource()
        await source.start(dispatcher.on_record)
        await source.feed(record)
        source.end()
    """

    def __init__(self, name: str = "memory", max_buffered: int = 0):
        """
        Args:
            name: Source name for logs
            max_buffered: Queue bound for feed() (0 = unbounded)
        """
        super().__init__(name)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_buffered)
        self.closed = False

    async def feed(self, record: ChangeRecord) -> None:
        """Queue a record, waiting if the buffer is full."""
        await self._queue.put(record)

    def feed_nowait(self, record: ChangeRecord) -> None:
        self._queue.put_nowait(record)

    def end(self) -> None:
        """Signal end of stream after the records already fed."""
        self._queue.put_nowait(_END)

    def fail(self, error: BaseException) -> None:
        """Make the feed fail with error after the records already fed."""
        self._queue.put_nowait(_Failure(error))

    async def records(self) -> AsyncIterator[ChangeRecord]:
        while True:
            item: Union[ChangeRecord, _Failure, object] = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item

    async def close(self) -> None:
        self.closed = True
