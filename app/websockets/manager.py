"""
WebSocket connection manager for streaming pipeline output to clients.

Tracks open WebSocket connections per stream and sends messages to them.
"""

import logging
from typing import Dict, Optional, Set
from uuid import uuid4

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages WebSocket connections per stream.

    Features:
    - Connection lifecycle management
    - Per-stream connection registry
    - Message sending with disconnect on failure
    """

    def __init__(self):
        # Active connections by connection_id
        self._connections: Dict[str, WebSocket] = {}

        # Stream membership: stream name -> set of connection_ids
        self._stream_connections: Dict[str, Set[str]] = {}

        # Connection metadata: connection_id -> {stream, etc}
        self._connection_metadata: Dict[str, dict] = {}

        logger.info("ConnectionManager initialized")

    async def connect(self, websocket: WebSocket, stream: str) -> str:
        """
        Accept a new WebSocket connection for a stream.

        Args:
            websocket: The WebSocket connection
            stream: Name of the stream the client listens to

        Returns:
            connection_id: Unique identifier for this connection
        """
        await websocket.accept()

        connection_id = str(uuid4())
        self._connections[connection_id] = websocket
        self._connection_metadata[connection_id] = {"stream": stream}
        self._stream_connections.setdefault(stream, set()).add(connection_id)

        logger.info(
            f"WebSocket connected: {connection_id} (stream: {stream}), "
            f"total connections: {len(self._connections)}"
        )

        return connection_id

    async def disconnect(self, connection_id: str):
        """
        Remove a WebSocket connection.

        Args:
            connection_id: Connection to remove
        """
        if connection_id not in self._connections:
            return

        metadata = self._connection_metadata.pop(connection_id, {})
        stream = metadata.get("stream")

        if stream and stream in self._stream_connections:
            self._stream_connections[stream].discard(connection_id)
            if not self._stream_connections[stream]:
                del self._stream_connections[stream]

        del self._connections[connection_id]

        logger.info(
            f"WebSocket disconnected: {connection_id}, "
            f"remaining connections: {len(self._connections)}"
        )

    async def send_message(self, connection_id: str, message: dict) -> bool:
        """
        Send a message to a specific connection.

        Args:
            connection_id: Target connection
            message: Message to send

        Returns:
            True if sent, False if the connection is unknown or the send failed
            (the connection is then removed).
        """
        websocket = self._connections.get(connection_id)
        if websocket is None:
            logger.warning(f"Cannot send to unknown connection: {connection_id}")
            return False

        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.error(f"Failed to send message to {connection_id}: {e}")
            await self.disconnect(connection_id)
            return False
        return True

    def get_stats(self) -> dict:
        """
        Get connection statistics.

        Returns:
            Statistics dictionary
        """
        return {
            "total_connections": len(self._connections),
            "connections_by_stream": {
                stream: len(conn_ids)
                for stream, conn_ids in self._stream_connections.items()
            },
        }


# Global singleton
_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """
    Get or create the global ConnectionManager singleton.

    Returns:
        The connection manager instance
    """
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager
