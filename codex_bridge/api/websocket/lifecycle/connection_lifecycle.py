"""
ConnectionLifecycle - Client connection state machine
=====================================================
Orchestrates one client WebSocket from accept to cleanup:

    CONNECTING -> OPEN -> CLOSING -> CLOSED

1. Accept: register in the ClientRegistry, send the ``connected`` notification
2. Message loop: every frame is decoded and dispatched in its own task.
   Tasks start in arrival order but may finish in any order, so responses
   are written in completion order and clients match them by ``id``
3. Disconnect: mark CLOSING (blocks late session inserts), close every
   session the client owns, unregister, mark CLOSED

A frame that is not valid JSON gets a ParseError response with ``id: null``
and leaves the connection open.
"""

import asyncio
import json
from typing import Any, Dict, Optional, Set, Union, TYPE_CHECKING

from websockets.exceptions import ConnectionClosed

from ....core.logger import StructuredLogger
from ...error_mapper import ErrorCode, ErrorMapper
from ...response_envelope import error_response, notification
from .client_registry import ClientRegistry, ConnectionState
from .session_registry import SessionRegistry

if TYPE_CHECKING:
    from ..handlers.request_dispatcher import RequestDispatcher


class ConnectionLifecycle:
    """
    Per-connection supervisor.

    Dependencies:
    - client_registry: client tracking and outbound writes
    - session_registry: cascade close on disconnect
    - dispatcher: request -> response
    """

    def __init__(self,
                 client_registry: ClientRegistry,
                 session_registry: SessionRegistry,
                 dispatcher: "RequestDispatcher",
                 server_version: str = "1.0.0",
                 error_mapper: Optional[ErrorMapper] = None,
                 logger: Optional[StructuredLogger] = None):
        self.client_registry = client_registry
        self.session_registry = session_registry
        self.dispatcher = dispatcher
        self.server_version = server_version
        self.error_mapper = error_mapper or ErrorMapper()
        self.logger = logger

        # In-flight request tasks across all connections
        self._inflight: Set[asyncio.Task] = set()

        # Statistics
        self.total_connections_handled = 0
        self.total_messages_processed = 0
        self.total_parse_errors = 0

    @staticmethod
    def _extract_remote_address(websocket: Any) -> str:
        remote = getattr(websocket, "remote_address", None)
        if isinstance(remote, tuple) and remote:
            return f"{remote[0]}:{remote[1]}" if len(remote) > 1 else str(remote[0])
        return "unknown"

    async def handle_client_connection(self, websocket: Any):
        """websockets server handler: runs for the whole life of one client connection."""
        remote_address = self._extract_remote_address(websocket)
        connection = self.client_registry.register(websocket, remote_address)
        client_id = connection.client_id
        self.total_connections_handled += 1

        connection.state = ConnectionState.OPEN
        if self.logger:
            self.logger.info("connection_lifecycle.client_connected", {
                "client_id": client_id,
                "remote_address": remote_address
            })

        try:
            await self.client_registry.send(client_id, notification("connected", {
                "clientId": client_id,
                "serverVersion": self.server_version
            }))

            async for message in websocket:
                connection.messages_received += 1
                self._spawn(self._process_message(client_id, message))

        except ConnectionClosed as e:
            if self.logger:
                self.logger.info("connection_lifecycle.connection_closed_abnormally", {
                    "client_id": client_id,
                    "close_code": e.rcvd.code if e.rcvd else None
                })
        finally:
            await self._cleanup_connection(client_id)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _process_message(self, client_id: str, message: Union[str, bytes]):
        """Decode, dispatch and answer a single client frame."""
        try:
            if isinstance(message, (bytes, bytearray)):
                message = message.decode('utf-8')
            request = json.loads(message)
        except (ValueError, RecursionError) as e:
            # ValueError covers JSONDecodeError and UnicodeDecodeError; deep nesting raises RecursionError
            self.total_parse_errors += 1
            if self.logger:
                self.logger.warning("connection_lifecycle.parse_error", {
                    "client_id": client_id,
                    "error": str(e)
                })
            info = self.error_mapper.map(ErrorCode.PARSE_ERROR)
            await self.client_registry.send(client_id, error_response(None, info, data=str(e)))
            return

        response = await self.dispatcher.dispatch(client_id, request)
        self.total_messages_processed += 1

        delivered = await self.client_registry.send(client_id, response)
        if not delivered and self.logger:
            self.logger.info("connection_lifecycle.response_dropped", {
                "client_id": client_id,
                "request_id": response.get("id")
            })

    async def _cleanup_connection(self, client_id: str):
        connection = self.client_registry.get(client_id)
        if connection is None:
            return

        connection.state = ConnectionState.CLOSING
        closed_sessions = await self.session_registry.close_all_for_client(client_id)
        self.client_registry.unregister(client_id)

        if self.logger:
            self.logger.info("connection_lifecycle.client_disconnected", {
                "client_id": client_id,
                "sessions_closed": closed_sessions,
                "messages_received": connection.messages_received,
                "messages_sent": connection.messages_sent
            })

    async def close_client(self, client_id: str, code: int = 1001, reason: str = "Server shutting down"):
        """Notify a client of shutdown and close its socket with a documented reason."""
        connection = self.client_registry.get(client_id)
        if connection is None:
            return

        await self.client_registry.send(client_id, notification("shutdown", {"reason": "server_shutdown"}))
        try:
            await connection.websocket.close(code, reason)
        except (ConnectionClosed, OSError) as e:
            if self.logger:
                self.logger.debug("connection_lifecycle.close_ignored", {
                    "client_id": client_id,
                    "error": str(e)
                })

    async def cancel_inflight(self):
        """Cancel outstanding request tasks (server shutdown only)."""
        tasks = [task for task in self._inflight if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_connections_handled": self.total_connections_handled,
            "total_messages_processed": self.total_messages_processed,
            "total_parse_errors": self.total_parse_errors,
            "inflight_requests": len(self._inflight),
        }
