"""
Change record pipeline.

Wires a ChangeRecordSource to the dispatcher and broadcast hub, and gives the
owner explicit lifecycle control:

    pipeline = CDCPipeline(source)
    await pipeline.start()
    ...
    await pipeline.stop()     # idempotent

When the source ends or fails, the hub is closed so every subscriber's stream
ends. A source failure is kept and raised from wait() as SourceError.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from app.api import metrics as pipeline_metrics
from app.config import settings
from app.events.dispatcher import ChangeEventDispatcher
from app.events.hub import BroadcastHub
from core.exceptions import SourceError, is_retryable
from infrastructure.sources.base import ChangeRecordSource

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Lifecycle state of a pipeline."""

    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"
    STOPPED = "stopped"


class CDCPipeline:
    """
    Source -> Dispatcher -> Hub, with start/stop owned by the caller.

    Args:
        source: Where change records come from
        hub: Hub events are published on (default: new BroadcastHub)
        dispatcher: Record router (default: dispatcher over hub)
        on_failure: Called with the SourceError if the source fails
        stop_timeout: Seconds allowed for the source to wind down
    """

    def __init__(
        self,
        source: ChangeRecordSource,
        hub: Optional[BroadcastHub] = None,
        dispatcher: Optional[ChangeEventDispatcher] = None,
        on_failure: Optional[Callable[[SourceError], None]] = None,
        stop_timeout: Optional[float] = None,
    ):
        self.source = source
        self.hub = hub or BroadcastHub()
        self.dispatcher = dispatcher or ChangeEventDispatcher(self.hub)
        self._on_failure = on_failure
        self._stop_timeout = stop_timeout or settings.SOURCE_STOP_TIMEOUT_SECONDS

        self._state = PipelineState.CREATED
        self._failure: Optional[SourceError] = None
        self._monitor: Optional[asyncio.Task] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def failure(self) -> Optional[SourceError]:
        return self._failure

    async def start(self) -> None:
        """
        Start consuming the source.

        Returns as soon as delivery is running. Call once.
        """
        if self._state is not PipelineState.CREATED:
            logger.warning(f"Pipeline already {self._state.value}, ignoring start()")
            return

        await self.source.start(self.dispatcher.on_record)
        self._monitor = asyncio.create_task(self._watch_source(), name="cdc-pipeline-monitor")
        self._state = PipelineState.RUNNING
        pipeline_metrics.pipeline_running.set(1)
        logger.info(f"Pipeline started on source '{self.source.name}'")

    async def _watch_source(self) -> None:
        try:
            await self.source.wait_closed()
        except SourceError as e:
            self._failure = e
            self._state = PipelineState.FAILED
            logger.error(
                f"Change record source failed, pipeline terminating: {e} "
                f"(retryable: {is_retryable(e)})"
            )
            if self._on_failure is not None:
                self._on_failure(e)
        else:
            if self._state is PipelineState.RUNNING:
                self._state = PipelineState.FINISHED
                logger.info("Change record source ended, pipeline finished")
        finally:
            self.hub.close()
            pipeline_metrics.pipeline_running.set(0)

    async def wait(self) -> None:
        """
        Wait until the source ends or the pipeline is stopped.

        Raises:
            SourceError: If the source failed.
            RuntimeError: If the pipeline was never started.
        """
        if self._monitor is None:
            raise RuntimeError("Pipeline has not been started")

        await asyncio.shield(self._monitor)
        if self._failure is not None:
            raise self._failure

    async def stop(self) -> None:
        """
        Stop the source, release all subscriptions, and close the hub.

        Calling stop() on a stopped pipeline is a no-op.

        Raises:
            ShutdownError: If releasing the source failed. The pipeline is
                still considered stopped.
        """
        if self._state is PipelineState.STOPPED:
            return

        previous = self._state
        self._state = PipelineState.STOPPED
        logger.info("Stopping pipeline...")

        try:
            await self.source.stop(timeout=self._stop_timeout)
        finally:
            self.hub.close()
            if self._monitor is not None and not self._monitor.done():
                await asyncio.wait({self._monitor}, timeout=self._stop_timeout)
            pipeline_metrics.pipeline_running.set(0)

        logger.info(f"Pipeline stopped (was {previous.value})")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get pipeline statistics.

        Returns:
            Dictionary with state, failure, and the source, dispatcher and
            hub statistics.
        """
        return {
            "state": self._state.value,
            "failure": str(self._failure) if self._failure else None,
            "source": self.source.get_statistics(),
            "dispatcher": self.dispatcher.get_statistics(),
            "hub": self.hub.get_statistics(),
        }
