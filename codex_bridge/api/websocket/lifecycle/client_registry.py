"""
ClientRegistry - Connected client tracking
==========================================
Maps client id -> ClientConnection, used to route responses and stream
notifications back to the right WebSocket.

A WebSocket is registered at most once: registering the same socket again
returns the existing entry instead of minting a second id.

All mutations are synchronous (no await inside), so they never interleave
on the event loop.
"""

import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from ....core.logger import StructuredLogger


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class ClientConnection:
    """Client connection state"""

    client_id: str
    websocket: Any  # websockets ServerConnection
    remote_address: str
    connected_at: datetime
    state: ConnectionState = ConnectionState.CONNECTING

    messages_sent: int = 0
    messages_received: int = 0
    send_failures: int = 0

    @property
    def is_open(self) -> bool:
        """Open in the bridge's lifecycle and at the transport level."""
        if self.state != ConnectionState.OPEN:
            return False
        transport_state = getattr(self.websocket, "state", State.OPEN)
        return transport_state == State.OPEN

    def get_connection_age_seconds(self) -> float:
        return time.time() - self.connected_at.timestamp()


class ClientRegistry:
    """Owns the client id -> connection mapping"""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger
        self._clients: Dict[str, ClientConnection] = {}

        self.total_registered = 0

    @staticmethod
    def generate_client_id() -> str:
        return f"client-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"

    def register(self, websocket: Any, remote_address: str = "unknown") -> ClientConnection:
        """
        Register a freshly accepted WebSocket.

        Returns:
            The ClientConnection (existing one if this socket is already known)
        """
        for existing in self._clients.values():
            if existing.websocket is websocket:
                return existing

        client_id = self.generate_client_id()
        while client_id in self._clients:
            client_id = self.generate_client_id()

        connection = ClientConnection(
            client_id=client_id,
            websocket=websocket,
            remote_address=remote_address,
            connected_at=datetime.now(),
        )
        self._clients[client_id] = connection
        self.total_registered += 1

        if self.logger:
            self.logger.debug("client_registry.registered", {
                "client_id": client_id,
                "remote_address": remote_address,
                "total_clients": len(self._clients)
            })
        return connection

    def unregister(self, client_id: str) -> Optional[ClientConnection]:
        connection = self._clients.pop(client_id, None)
        if connection:
            connection.state = ConnectionState.CLOSED
            if self.logger:
                self.logger.debug("client_registry.unregistered", {
                    "client_id": client_id,
                    "total_clients": len(self._clients)
                })
        return connection

    def get(self, client_id: str) -> Optional[ClientConnection]:
        return self._clients.get(client_id)

    def is_open(self, client_id: str) -> bool:
        connection = self._clients.get(client_id)
        return connection is not None and connection.is_open

    def all(self) -> List[ClientConnection]:
        return list(self._clients.values())

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._clients

    async def send(self, client_id: str, message: Dict[str, Any]) -> bool:
        """
        Serialize and send a message to one client.

        Returns:
            True if written, False if the client is gone/not open or the write failed
        """
        connection = self._clients.get(client_id)
        if connection is None or not connection.is_open:
            return False

        try:
            await connection.websocket.send(json.dumps(message))
        except ConnectionClosed as e:
            connection.send_failures += 1
            if self.logger:
                self.logger.warning("client_registry.send_failed", {
                    "client_id": client_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
            return False

        connection.messages_sent += 1
        return True
