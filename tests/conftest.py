"""
Shared fixtures for bridge unit tests.

Registries are real objects; only the network edges are faked: the upstream
connector hands out FakeUpstream connections and clients are FakeClientSocket.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from codex_bridge.api.websocket.broadcasters.upstream_router import UpstreamMessageRouter
from codex_bridge.api.websocket.handlers.request_dispatcher import RequestDispatcher
from codex_bridge.api.websocket.lifecycle.client_registry import ClientRegistry, ConnectionState
from codex_bridge.api.websocket.lifecycle.session_registry import SessionRegistry
from tests.fixtures.connections import FakeClientSocket, FakeUpstream


@pytest.fixture
def mock_logger():
    """Create mock logger"""
    logger = MagicMock()
    logger.info = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.debug = MagicMock()
    return logger


@pytest.fixture
def upstreams():
    """Every FakeUpstream handed out by the connector, in creation order"""
    return []


@pytest.fixture
def connector(upstreams):
    """Upstream connector that succeeds with a fresh FakeUpstream per call"""
    connector = MagicMock()
    connector.url = "ws://127.0.0.1:4500"
    connector.connect_timeout = 1.0

    async def connect():
        upstream = FakeUpstream()
        upstreams.append(upstream)
        return upstream

    connector.connect = AsyncMock(side_effect=connect)
    return connector


@pytest.fixture
def client_registry(mock_logger):
    return ClientRegistry(logger=mock_logger)


@pytest.fixture
def session_registry(connector, client_registry, mock_logger):
    return SessionRegistry(connector, client_registry, logger=mock_logger)


@pytest.fixture
def upstream_router(session_registry, client_registry, mock_logger):
    return UpstreamMessageRouter(session_registry, client_registry, logger=mock_logger)


@pytest.fixture
def dispatcher(session_registry, upstream_router, mock_logger):
    return RequestDispatcher(session_registry, upstream_router, logger=mock_logger)


@pytest.fixture
def open_client(client_registry):
    """Register a client socket and move it to OPEN; returns (client_id, socket)"""
    def _open(remote_address=("127.0.0.1", 50000)):
        websocket = FakeClientSocket(remote_address)
        connection = client_registry.register(websocket, f"{remote_address[0]}:{remote_address[1]}")
        connection.state = ConnectionState.OPEN
        return connection.client_id, websocket
    return _open
