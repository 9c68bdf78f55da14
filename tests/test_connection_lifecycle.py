"""
Unit tests for ConnectionLifecycle
==================================
Tests connection lifecycle orchestration: accept, message handling, disconnect.

Test coverage:
- Remote address extraction
- connected notification on accept
- ParseError for undecodable frames (connection stays usable)
- Per-message tasks (responses in completion order)
- Disconnect cascade: sessions closed, client unregistered
- Shutdown notification + close code
"""

import asyncio

import pytest
from unittest.mock import Mock

from codex_bridge.api.websocket.lifecycle import ConnectionLifecycle
from codex_bridge.api.websocket.lifecycle.client_registry import ConnectionState
from tests.fixtures.connections import FakeClientSocket, wait_until


@pytest.fixture
def lifecycle(client_registry, session_registry, dispatcher, mock_logger):
    return ConnectionLifecycle(client_registry, session_registry, dispatcher,
                               server_version="1.0.0", logger=mock_logger)


async def accept(lifecycle, websocket):
    """Run the connection handler until the connected notification is out."""
    task = asyncio.create_task(lifecycle.handle_client_connection(websocket))
    await wait_until(lambda: len(websocket.sent_raw) >= 1)
    return task


def responses(websocket):
    return [m for m in websocket.sent if "method" not in m]


class TestConnectionLifecycleExtraction:
    """Test metadata extraction methods"""

    def test_extract_remote_address(self):
        mock_ws = Mock()
        mock_ws.remote_address = ("10.0.0.1", 54321)

        assert ConnectionLifecycle._extract_remote_address(mock_ws) == "10.0.0.1:54321"

    def test_extract_remote_address_fallback(self):
        mock_ws = Mock(spec=[])

        assert ConnectionLifecycle._extract_remote_address(mock_ws) == "unknown"


class TestConnectionAccept:
    """Test accept and the connected notification"""

    @pytest.mark.asyncio
    async def test_connected_notification(self, lifecycle, client_registry):
        websocket = FakeClientSocket()
        task = await accept(lifecycle, websocket)

        connected = websocket.sent[0]
        assert connected["jsonrpc"] == "2.0"
        assert connected["method"] == "connected"
        assert connected["params"]["serverVersion"] == "1.0.0"
        client_id = connected["params"]["clientId"]
        assert client_registry.get(client_id).state == ConnectionState.OPEN

        websocket.hang_up()
        await task

    @pytest.mark.asyncio
    async def test_each_connection_gets_distinct_client_id(self, lifecycle):
        first, second = FakeClientSocket(), FakeClientSocket()
        tasks = [await accept(lifecycle, first), await accept(lifecycle, second)]

        assert first.sent[0]["params"]["clientId"] != second.sent[0]["params"]["clientId"]

        first.hang_up()
        second.hang_up()
        await asyncio.gather(*tasks)


class TestMessageProcessing:
    """Test frame decoding and dispatch"""

    @pytest.mark.asyncio
    async def test_invalid_json_gets_parse_error_and_connection_stays_open(self, lifecycle):
        websocket = FakeClientSocket()
        task = await accept(lifecycle, websocket)

        websocket.feed("this is not json")
        await wait_until(lambda: len(responses(websocket)) == 1)

        error = responses(websocket)[0]
        assert error["id"] is None
        assert error["error"]["code"] == -32700
        assert error["error"]["message"] == "Parse error"
        assert "data" in error["error"]

        websocket.feed({"jsonrpc": "2.0", "id": 2, "method": "foo"})
        await wait_until(lambda: len(responses(websocket)) == 2)
        assert responses(websocket)[1]["error"]["code"] == -32601

        websocket.hang_up()
        await task

    @pytest.mark.asyncio
    async def test_deeply_nested_frame_gets_parse_error(self, lifecycle):
        websocket = FakeClientSocket()
        task = await accept(lifecycle, websocket)

        websocket.feed("[" * 200000 + "]" * 200000)
        await wait_until(lambda: len(responses(websocket)) == 1)

        error = responses(websocket)[0]
        assert error["id"] is None
        assert error["error"]["code"] == -32700
        assert "data" in error["error"]

        websocket.feed({"jsonrpc": "2.0", "id": 2, "method": "foo"})
        await wait_until(lambda: len(responses(websocket)) == 2)
        assert responses(websocket)[1]["id"] == 2

        websocket.hang_up()
        await task

    @pytest.mark.asyncio
    async def test_binary_frames_are_decoded(self, lifecycle):
        websocket = FakeClientSocket()
        task = await accept(lifecycle, websocket)

        websocket.feed(b'{"jsonrpc": "2.0", "id": 3, "method": "foo"}')
        await wait_until(lambda: len(responses(websocket)) == 1)

        assert responses(websocket)[0]["id"] == 3

        websocket.hang_up()
        await task

    @pytest.mark.asyncio
    async def test_responses_are_written_in_completion_order(self, lifecycle, dispatcher):
        websocket = FakeClientSocket()

        async def slow(client_id, params):
            await asyncio.sleep(0.2)
            return {"slow": True}

        dispatcher.register_handler("slow", slow)
        task = await accept(lifecycle, websocket)

        websocket.feed({"jsonrpc": "2.0", "id": "a", "method": "slow"})
        websocket.feed({"jsonrpc": "2.0", "id": "b", "method": "stream", "params": {}})
        await wait_until(lambda: len(responses(websocket)) == 2)

        assert [r["id"] for r in responses(websocket)] == ["b", "a"]

        websocket.hang_up()
        await task


class TestConnectionCleanup:
    """Test disconnect and shutdown"""

    @pytest.mark.asyncio
    async def test_disconnect_closes_owned_sessions(self, lifecycle, client_registry, session_registry, upstreams):
        websocket = FakeClientSocket()
        task = await accept(lifecycle, websocket)
        client_id = websocket.sent[0]["params"]["clientId"]

        websocket.feed({"jsonrpc": "2.0", "id": 1, "method": "session.create"})
        await wait_until(lambda: len(responses(websocket)) == 1)
        session_id = responses(websocket)[0]["result"]["sessionId"]
        assert session_id in session_registry

        websocket.hang_up()
        await task

        assert session_id not in session_registry
        assert client_id not in client_registry
        upstreams[0].close.assert_awaited()

    @pytest.mark.asyncio
    async def test_close_client_sends_shutdown_then_closes(self, lifecycle):
        websocket = FakeClientSocket()
        task = await accept(lifecycle, websocket)
        client_id = websocket.sent[0]["params"]["clientId"]

        await lifecycle.close_client(client_id, 1001, "Server shutting down")
        await task

        assert websocket.sent[-1] == {
            "jsonrpc": "2.0",
            "method": "shutdown",
            "params": {"reason": "server_shutdown"}
        }
        websocket.close.assert_awaited_once_with(1001, "Server shutting down")

    @pytest.mark.asyncio
    async def test_close_unknown_client_is_noop(self, lifecycle):
        await lifecycle.close_client("client-0-000000000")
