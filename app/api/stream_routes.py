"""
WebSocket endpoints streaming pipeline output to clients.

Streams:
- /v1/stream/authenticator-events: every AuthenticatorMetricEvent
- /v1/stream/online-user-events: every OnlineUserEvent
- /v1/stream/authenticator-metrics: windowed sign-in/sign-off summaries
- /v1/stream/online-user-metrics: periodic online/stale user counts

Each connection gets its own hub subscription, so a slow client only
lags itself. Messages look like:

```json
{"type": "event", "stream": "authenticator-events", "data": {...}}
```

When the pipeline shuts down the stream ends and the socket is closed
with 1001 (going away).
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from app.api.dependencies import get_aggregation_service, get_pipeline
from app.config import settings
from app.events.hub import BroadcastHub
from app.models.events import StreamModel
from app.services.aggregation import MetricAggregationService
from app.services.online_users import OnlineUserTracker
from app.services.pipeline import CDCPipeline
from app.websockets.manager import ConnectionManager, get_connection_manager
from core.exceptions import HubClosedError
from infrastructure.concurrency.broadcast import Subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/stream", tags=["stream"])


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            # Clients do not send anything meaningful; this only notices the close.
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _forward(
    manager: ConnectionManager,
    connection_id: str,
    stream: str,
    items: AsyncIterator[StreamModel],
) -> None:
    async for item in items:
        sent = await manager.send_message(
            connection_id,
            {"type": "event", "stream": stream, "data": item.to_message()},
        )
        if not sent:
            return


async def _serve_stream(
    websocket: WebSocket,
    stream: str,
    hub: BroadcastHub,
    subscribe,
    build_items=None,
) -> None:
    """
    Accept the socket, subscribe, and forward items until either side ends.

    Args:
        websocket: Client connection
        stream: Stream name reported to the client
        hub: Hub the subscription is taken from
        subscribe: Callable taking the hub and returning a Subscription
        build_items: Optional callable turning the subscription into the
                     stream actually sent (aggregation, tracking)
    """
    manager = get_connection_manager()
    connection_id = await manager.connect(websocket, stream)

    try:
        subscription: Subscription = subscribe(hub)
    except HubClosedError as e:
        logger.warning(f"Rejecting {stream} stream for {connection_id}: {e}")
        await manager.disconnect(connection_id)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Event hub is closed")
        return

    items = build_items(subscription) if build_items else subscription

    await manager.send_message(
        connection_id,
        {
            "type": "system",
            "message": f"Subscribed to {stream}",
            "connection_id": connection_id,
            "subscriber_id": str(subscription.subscription_id),
        },
    )

    sender = asyncio.create_task(_forward(manager, connection_id, stream, items))
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    close_code: Optional[int] = None

    try:
        done, pending = await asyncio.wait(
            {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if sender in done and receiver not in done:
            error = sender.exception()
            if error is not None:
                logger.error(
                    f"Stream {stream} failed for {connection_id}: {error}",
                    exc_info=error,
                    extra={"subscriber_id": str(subscription.subscription_id)},
                )
                close_code = status.WS_1011_INTERNAL_ERROR
            else:
                close_code = status.WS_1001_GOING_AWAY
    finally:
        subscription.unsubscribe()
        if items is not subscription:
            await items.aclose()
        await manager.disconnect(connection_id)

    if close_code is not None:
        try:
            await websocket.close(code=close_code)
        except (RuntimeError, WebSocketDisconnect):
            # Client went away between the stream ending and the close.
            logger.debug(f"Socket {connection_id} already closed")


@router.websocket("/authenticator-events")
async def stream_authenticator_events(
    websocket: WebSocket,
    pipeline: CDCPipeline = Depends(get_pipeline),
):
    """Stream every AuthenticatorMetricEvent published after connecting."""
    await _serve_stream(
        websocket,
        "authenticator-events",
        pipeline.hub,
        lambda hub: hub.subscribe_authenticator_events(),
    )


@router.websocket("/online-user-events")
async def stream_online_user_events(
    websocket: WebSocket,
    pipeline: CDCPipeline = Depends(get_pipeline),
):
    """Stream every OnlineUserEvent published after connecting."""
    await _serve_stream(
        websocket,
        "online-user-events",
        pipeline.hub,
        lambda hub: hub.subscribe_online_user_events(),
    )


@router.websocket("/authenticator-metrics")
async def stream_authenticator_metrics(
    websocket: WebSocket,
    window_seconds: Optional[float] = Query(None, gt=0),
    group_by_authenticator: bool = Query(False),
    pipeline: CDCPipeline = Depends(get_pipeline),
    aggregation: MetricAggregationService = Depends(get_aggregation_service),
):
    """
    Stream AggregateSummary messages, one per non-empty window.

    Query parameters:
    - window_seconds: Window length (default AGGREGATION_WINDOW_SECONDS)
    - group_by_authenticator: One summary per authenticator instead of "*"
    """
    window = window_seconds or settings.AGGREGATION_WINDOW_SECONDS
    await _serve_stream(
        websocket,
        "authenticator-metrics",
        pipeline.hub,
        lambda hub: hub.subscribe_authenticator_events(),
        lambda subscription: aggregation.aggregate_by_window(
            subscription, window, group_by_authenticator=group_by_authenticator
        ),
    )


@router.websocket("/online-user-metrics")
async def stream_online_user_metrics(
    websocket: WebSocket,
    interval_seconds: Optional[float] = Query(None, gt=0),
    pipeline: CDCPipeline = Depends(get_pipeline),
):
    """
    Stream OnlineUserMetrics snapshots.

    The tracker only sees sessions published after connecting.
    """
    interval = interval_seconds or settings.ONLINE_USER_INTERVAL_SECONDS
    tracker = OnlineUserTracker()
    await _serve_stream(
        websocket,
        "online-user-metrics",
        pipeline.hub,
        lambda hub: hub.subscribe_online_user_events(),
        lambda subscription: tracker.track(subscription, interval),
    )
