"""
Bridge Server
=============
Top-level component of the bridge: owns the listening socket, both
registries and the components wired on top of them.

    clients --ws--> BridgeServer --ws (one per session)--> app-server

Every instance builds its own registries, so several servers can live in one
process (the test-suite relies on that).
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Dict, Optional

import websockets

from ..core.logger import StructuredLogger, get_logger
from ..infrastructure.config.settings import BridgeSettings
from ..infrastructure.upstream.connector import UpstreamConnector
from ..infrastructure.upstream.probe import DiagnosticProbe, ProbeResult
from .error_mapper import ErrorMapper
from .websocket.broadcasters.upstream_router import UpstreamMessageRouter
from .websocket.handlers.request_dispatcher import RequestDispatcher
from .websocket.lifecycle.client_registry import ClientRegistry
from .websocket.lifecycle.connection_lifecycle import ConnectionLifecycle
from .websocket.lifecycle.session_registry import SessionRegistry

SHUTDOWN_CLOSE_CODE = 1001
SHUTDOWN_CLOSE_REASON = "Server shutting down"


class BridgeServer:
    """
    Client-facing WebSocket server of the bridge.

    Usage:
        server = BridgeServer(settings)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(self,
                 settings: BridgeSettings,
                 connector: Optional[UpstreamConnector] = None,
                 logger: Optional[StructuredLogger] = None):
        """
        Args:
            settings: Bridge settings (server + app_server sections are used)
            connector: Upstream connector override (defaults to one built from settings)
            logger: Optional logger; component loggers are derived from get_logger()
        """
        self.settings = settings
        self.host = settings.server.host
        self.port = settings.server.port
        self.logger = logger or get_logger("codex_bridge.server")

        self.error_mapper = ErrorMapper()
        self.connector = connector or UpstreamConnector(
            settings.app_server.url,
            connect_timeout=settings.app_server.connect_timeout_seconds,
            logger=get_logger("codex_bridge.upstream"),
        )
        self.client_registry = ClientRegistry(logger=get_logger("codex_bridge.clients"))
        self.session_registry = SessionRegistry(
            self.connector,
            self.client_registry,
            logger=get_logger("codex_bridge.sessions"),
        )
        self.upstream_router = UpstreamMessageRouter(
            self.session_registry,
            self.client_registry,
            logger=get_logger("codex_bridge.router"),
        )
        self.dispatcher = RequestDispatcher(
            self.session_registry,
            self.upstream_router,
            error_mapper=self.error_mapper,
            logger=get_logger("codex_bridge.dispatcher"),
        )
        self.lifecycle = ConnectionLifecycle(
            self.client_registry,
            self.session_registry,
            self.dispatcher,
            server_version=settings.version,
            error_mapper=self.error_mapper,
            logger=get_logger("codex_bridge.lifecycle"),
        )
        self.probe = DiagnosticProbe(self.connector, logger=get_logger("codex_bridge.probe"))

        self.server = None
        self.is_running = False
        self.start_time = datetime.now()
        self._started_monotonic = time.monotonic()

    async def start(self):
        """
        Bind and start accepting clients.

        Raises:
            OSError: the listening socket could not be bound (fatal at startup)
        """
        if self.is_running:
            return

        self.logger.info("bridge_server.starting", {
            "host": self.host,
            "port": self.port,
            "app_server_url": self.connector.url
        })

        cfg = self.settings.server
        try:
            self.server = await websockets.serve(
                self.lifecycle.handle_client_connection,
                self.host,
                self.port,
                ping_interval=cfg.ping_interval_seconds,
                ping_timeout=cfg.ping_timeout_seconds,
                close_timeout=cfg.close_timeout_seconds,
                max_size=cfg.max_message_size,
                compression=None,
            )
        except OSError as e:
            self.logger.error("bridge_server.start_error", {
                "host": self.host,
                "port": self.port,
                "error": str(e),
                "error_type": type(e).__name__
            })
            raise

        sockets = list(self.server.sockets or [])
        if sockets:
            self.port = sockets[0].getsockname()[1]

        self.is_running = True
        self.start_time = datetime.now()
        self._started_monotonic = time.monotonic()
        self.logger.info("bridge_server.started", {
            "host": self.host,
            "port": self.port,
            "url": f"ws://{self.host}:{self.port}"
        })

    async def stop(self):
        """
        Graceful shutdown.

        Every client gets a ``shutdown`` notification and a 1001 close, every
        session is closed, then the listening socket is released.
        """
        if not self.is_running:
            return

        self.logger.info("bridge_server.stopping", {
            "clients": len(self.client_registry),
            "sessions": len(self.session_registry)
        })
        self.is_running = False

        if self.server:
            # Stop accepting first; existing connections are closed below
            self.server.close(close_connections=False)

        clients = self.client_registry.all()
        if clients:
            await asyncio.gather(
                *(self.lifecycle.close_client(c.client_id, SHUTDOWN_CLOSE_CODE, SHUTDOWN_CLOSE_REASON)
                  for c in clients),
                return_exceptions=True
            )

        closed_sessions = await self.session_registry.close_all()
        await self.lifecycle.cancel_inflight()

        if self.server:
            await self.server.wait_closed()
            self.server = None

        self.logger.info("bridge_server.stopped", {
            "uptime_seconds": self.uptime_seconds,
            "sessions_closed": closed_sessions,
            "total_connections": self.lifecycle.total_connections_handled,
            "total_messages": self.lifecycle.total_messages_processed
        })

    @property
    def uptime_seconds(self) -> float:
        return round(time.monotonic() - self._started_monotonic, 3)

    async def probe_upstream(self) -> ProbeResult:
        return await self.probe.run()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "uptime_seconds": self.uptime_seconds,
            "clients": len(self.client_registry),
            "sessions": len(self.session_registry),
            "lifecycle": self.lifecycle.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "router": self.upstream_router.get_stats(),
            "upstream": self.connector.get_stats(),
        }
