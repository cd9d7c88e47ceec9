"""
Change record source interface.

A source turns some upstream feed (a replication slot, a Kafka topic, a file)
into ChangeRecords. Concrete sources only implement records() and, when they
hold a connection, close(). The base class owns delivery: start() runs a
single task that pulls records and hands them to the registered handler one
at a time, so the handler never runs concurrently with itself.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Dict, Optional

from app.models.events import ChangeRecord
from core.exceptions import ShutdownError, SourceError

logger = logging.getLogger(__name__)

RecordHandler = Callable[[ChangeRecord], None]


class ChangeRecordSource(ABC):
    """
    Base class for change record sources.

    Lifecycle:
        await source.start(handler)   # returns once delivery is running
        await source.wait_closed()    # end of stream, or SourceError
        await source.stop()           # clean shutdown, idempotent
    """

    def __init__(self, name: str):
        self.name = name
        self._handler: Optional[RecordHandler] = None
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self._records_delivered = 0

    @abstractmethod
    def records(self) -> AsyncIterator[ChangeRecord]:
        """Yield change records until the feed ends. Raise on fatal failure."""

    async def close(self) -> None:
        """Release connection resources. Nothing to release by default."""

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, handler: RecordHandler) -> None:
        """
        Begin delivering records to handler.

        Delivery runs in its own task; this call does not wait for records.
        """
        if self._task is not None:
            logger.warning(f"Source '{self.name}' already started")
            return
        if self._stopped:
            logger.warning(f"Source '{self.name}' was stopped and cannot restart")
            return

        self._handler = handler
        self._task = asyncio.create_task(self._deliver(), name=f"cdc-source-{self.name}")
        logger.info(f"Source '{self.name}' started")

    async def _deliver(self) -> None:
        """Pull records and hand them to the handler, strictly one at a time."""
        async for record in self.records():
            self._handler(record)
            self._records_delivered += 1
        logger.info(
            f"Source '{self.name}' reached end of stream after "
            f"{self._records_delivered} records"
        )

    async def wait_closed(self) -> None:
        """
        Wait until delivery ends.

        Returns normally on end of stream or after stop().

        Raises:
            SourceError: If the feed failed.
        """
        if self._task is None:
            raise RuntimeError(f"Source '{self.name}' has not been started")

        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                return
            raise
        except SourceError:
            raise
        except Exception as e:
            raise SourceError(
                f"Change record source '{self.name}' failed",
                {"cause": f"{type(e).__name__}: {e}"},
            ) from e

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop delivery and release resources.

        Delivery is cancelled between records, never in the middle of a
        handler call. Calling stop() again is a no-op.

        Raises:
            ShutdownError: If delivery did not wind down within timeout or
                close() failed.
        """
        if self._stopped:
            return
        self._stopped = True

        logger.info(f"Stopping source '{self.name}'...")

        if self._task is not None and not self._task.done():
            self._task.cancel()
            done, _ = await asyncio.wait({self._task}, timeout=timeout)
            if not done:
                raise ShutdownError(
                    f"Source '{self.name}' did not stop in time", {"timeout": timeout}
                )

        try:
            await self.close()
        except Exception as e:
            raise ShutdownError(
                f"Failed to release source '{self.name}'",
                {"cause": f"{type(e).__name__}: {e}"},
            ) from e

        logger.info(f"Source '{self.name}' stopped")

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "records_delivered": self._records_delivered,
            "running": self.running,
            "stopped": self._stopped,
        }
