"""
Upstream Connector
==================
Opens WebSocket connections to the Codex app-server.

Every session gets its own upstream connection; the diagnostic probe opens a
transient one. Connect attempts are bounded by ``connect_timeout``; any
failure (timeout, refused, bad handshake, bad URL) surfaces as a single
``UpstreamUnavailableError`` so callers never see transport exceptions.
"""

import asyncio
import time
from typing import Optional

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import WebSocketException

from ...core.exceptions import UpstreamUnavailableError
from ...core.logger import StructuredLogger


class UpstreamConnector:
    """Factory for upstream WebSocket connections"""

    def __init__(self,
                 url: str,
                 connect_timeout: float = 5.0,
                 max_message_size: Optional[int] = None,
                 logger: Optional[StructuredLogger] = None):
        """
        Args:
            url: Upstream WebSocket URL (ws:// or wss://)
            connect_timeout: Seconds allowed for TCP connect + opening handshake
            max_message_size: Max inbound upstream frame size (None = unlimited)
            logger: Optional logger for diagnostics
        """
        self.url = url
        self.connect_timeout = connect_timeout
        self.max_message_size = max_message_size
        self.logger = logger

        self.total_connects = 0
        self.total_failures = 0

    async def connect(self) -> ClientConnection:
        """
        Open a new upstream connection.

        Returns:
            Open websockets client connection

        Raises:
            UpstreamUnavailableError: on timeout or any connection error
        """
        started = time.monotonic()
        if self.logger:
            self.logger.debug("upstream_connector.connecting", {"url": self.url})

        try:
            connection = await websockets.connect(
                self.url,
                open_timeout=self.connect_timeout,
                max_size=self.max_message_size,
                compression=None,
            )
        except asyncio.TimeoutError:
            self.total_failures += 1
            reason = f"Connection timeout to {self.url}"
            if self.logger:
                self.logger.warning("upstream_connector.connect_timeout", {
                    "url": self.url,
                    "timeout_seconds": self.connect_timeout
                })
            raise UpstreamUnavailableError(self.url, reason, timed_out=True) from None
        except (OSError, WebSocketException, ValueError) as e:
            # ValueError: malformed URL rejected before any I/O
            self.total_failures += 1
            reason = str(e) or type(e).__name__
            if self.logger:
                self.logger.warning("upstream_connector.connect_failed", {
                    "url": self.url,
                    "error": reason,
                    "error_type": type(e).__name__
                })
            raise UpstreamUnavailableError(self.url, reason) from e

        self.total_connects += 1
        if self.logger:
            self.logger.info("upstream_connector.connected", {
                "url": self.url,
                "connect_ms": round((time.monotonic() - started) * 1000, 2)
            })
        return connection

    def get_stats(self):
        return {
            "url": self.url,
            "connect_timeout_seconds": self.connect_timeout,
            "total_connects": self.total_connects,
            "total_failures": self.total_failures,
        }
