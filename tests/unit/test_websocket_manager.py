"""
Test suite for app/websockets/manager.py

Coverage targets:
- Connection acceptance and registration per stream
- Connection disconnection and cleanup
- Message sending to specific connections
- Connection statistics
- Error handling (send failures, unknown connections)
"""

from unittest.mock import AsyncMock, Mock

import pytest

from app.websockets.manager import ConnectionManager, get_connection_manager


def mock_websocket(send_error=None):
    ws = Mock()
    ws.accept = AsyncMock()
    ws.send_json = AsyncMock(side_effect=send_error)
    return ws


class TestConnectionManager:
    """Test ConnectionManager initialization."""

    def test_connection_manager_creation(self):
        """Test creating a ConnectionManager instance."""
        manager = ConnectionManager()

        assert len(manager._connections) == 0
        assert len(manager._stream_connections) == 0
        assert len(manager._connection_metadata) == 0


class TestWebSocketConnection:
    """Test WebSocket connection management."""

    @pytest.fixture
    def manager(self):
        """Provide fresh ConnectionManager for each test."""
        return ConnectionManager()

    @pytest.mark.asyncio
    async def test_connect_websocket(self, manager):
        """Test connecting a WebSocket."""
        ws = mock_websocket()

        connection_id = await manager.connect(ws, "authenticator-events")

        assert connection_id in manager._connections
        assert manager._connections[connection_id] is ws
        assert connection_id in manager._stream_connections["authenticator-events"]
        assert manager._connection_metadata[connection_id] == {"stream": "authenticator-events"}
        ws.accept.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_multiple_to_same_stream(self, manager):
        """Test multiple connections to the same stream."""
        conn_id1 = await manager.connect(mock_websocket(), "online-user-events")
        conn_id2 = await manager.connect(mock_websocket(), "online-user-events")

        assert conn_id1 != conn_id2
        assert manager._stream_connections["online-user-events"] == {conn_id1, conn_id2}

    @pytest.mark.asyncio
    async def test_disconnect_removes_empty_stream(self, manager):
        """Test that a stream entry is removed when its last connection leaves."""
        connection_id = await manager.connect(mock_websocket(), "authenticator-metrics")

        await manager.disconnect(connection_id)

        assert connection_id not in manager._connections
        assert connection_id not in manager._connection_metadata
        assert "authenticator-metrics" not in manager._stream_connections

    @pytest.mark.asyncio
    async def test_disconnect_one_keeps_others(self, manager):
        """Test disconnecting one connection keeps others active."""
        conn_id1 = await manager.connect(mock_websocket(), "authenticator-events")
        conn_id2 = await manager.connect(mock_websocket(), "authenticator-events")

        await manager.disconnect(conn_id1)

        assert conn_id2 in manager._connections
        assert manager._stream_connections["authenticator-events"] == {conn_id2}

    @pytest.mark.asyncio
    async def test_disconnect_twice(self, manager):
        """Second disconnect should not error."""
        connection_id = await manager.connect(mock_websocket(), "authenticator-events")

        await manager.disconnect(connection_id)
        await manager.disconnect(connection_id)

    @pytest.mark.asyncio
    async def test_disconnect_nonexistent_connection(self, manager):
        """Test disconnecting a nonexistent connection (should not error)."""
        await manager.disconnect("nonexistent-id")


class TestMessageSending:
    """Test message sending functionality."""

    @pytest.fixture
    def manager(self):
        """Provide fresh ConnectionManager for each test."""
        return ConnectionManager()

    @pytest.mark.asyncio
    async def test_send_message_success(self, manager):
        """Test sending a message to a connection."""
        ws = mock_websocket()
        connection_id = await manager.connect(ws, "authenticator-events")

        message = {"type": "event", "data": {"id": 1}}
        assert await manager.send_message(connection_id, message) is True

        ws.send_json.assert_called_once_with(message)

    @pytest.mark.asyncio
    async def test_send_message_to_unknown_connection(self, manager):
        """Sending to an unknown connection reports failure without raising."""
        assert await manager.send_message("unknown-id", {"type": "test"}) is False

    @pytest.mark.asyncio
    async def test_send_message_failure_disconnects(self, manager):
        """Test that send failure triggers disconnect."""
        ws = mock_websocket(send_error=Exception("Connection lost"))
        connection_id = await manager.connect(ws, "authenticator-events")

        assert await manager.send_message(connection_id, {"type": "test"}) is False

        assert connection_id not in manager._connections

    @pytest.mark.asyncio
    async def test_send_to_disconnected_connection(self, manager):
        """Test sending to a connection after it's disconnected."""
        ws = mock_websocket()
        connection_id = await manager.connect(ws, "authenticator-events")
        await manager.disconnect(connection_id)

        await manager.send_message(connection_id, {"type": "test"})

        ws.send_json.assert_not_called()


class TestConnectionStats:
    """Test connection statistics."""

    @pytest.fixture
    def manager(self):
        """Provide fresh ConnectionManager for each test."""
        return ConnectionManager()

    @pytest.mark.asyncio
    async def test_stats_empty(self, manager):
        assert manager.get_stats() == {"total_connections": 0, "connections_by_stream": {}}

    @pytest.mark.asyncio
    async def test_stats_with_connections(self, manager):
        await manager.connect(mock_websocket(), "authenticator-events")
        await manager.connect(mock_websocket(), "authenticator-events")
        conn_id = await manager.connect(mock_websocket(), "online-user-metrics")

        stats = manager.get_stats()
        assert stats["total_connections"] == 3
        assert stats["connections_by_stream"] == {
            "authenticator-events": 2,
            "online-user-metrics": 1,
        }

        await manager.disconnect(conn_id)
        assert manager.get_stats()["connections_by_stream"] == {"authenticator-events": 2}


class TestConnectionManagerSingleton:
    """Test singleton pattern for ConnectionManager."""

    def test_get_connection_manager_singleton(self):
        """Test that get_connection_manager returns same instance."""
        assert get_connection_manager() is get_connection_manager()
