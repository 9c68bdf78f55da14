"""
Health Server
=============
Read-only HTTP diagnostics for the bridge, served in-process by uvicorn.

    GET /        -> plain-text banner
    GET /health  -> uptime, client/session counts, upstream reachability
"""

import asyncio
import socket
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from ..core.logger import StructuredLogger
from .bridge_server import BridgeServer


def create_health_app(bridge: BridgeServer) -> FastAPI:
    """Build the diagnostic FastAPI app bound to one BridgeServer."""
    settings = bridge.settings
    app = FastAPI(
        title=f"{settings.app_name} diagnostics",
        version=settings.version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.bridge = bridge

    @app.get("/", response_class=PlainTextResponse)
    async def root(_: Request):
        return f"{settings.app_name} v{settings.version}\n"

    @app.get("/health")
    async def health(request: Request):
        server: BridgeServer = request.app.state.bridge
        probe = await server.probe_upstream()
        return JSONResponse({
            "status": "ok" if probe.ok else "degraded",
            "uptime": server.uptime_seconds,
            "clients": len(server.client_registry),
            "sessions": len(server.session_registry),
            "port": server.port,
            "appServerUrl": server.connector.url,
            "upstream": probe.to_dict(),
        })

    return app


class HealthServer:
    """Runs the diagnostic app on its own port alongside the bridge"""

    def __init__(self,
                 bridge: BridgeServer,
                 host: str,
                 port: int,
                 logger: Optional[StructuredLogger] = None):
        self.bridge = bridge
        self.host = host
        self.port = port
        self.logger = logger

        config = uvicorn.Config(
            create_health_app(bridge),
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        # uvicorn captures SIGINT/SIGTERM while serving and re-raises them to the
        # previously installed handlers on exit, so the bridge handlers still fire
        self._server = uvicorn.Server(config)
        self._task: Optional[asyncio.Task] = None

    def _bind(self) -> socket.socket:
        # Bound here so a busy port surfaces as OSError instead of uvicorn's sys.exit()
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise
        return sock

    async def start(self):
        """
        Raises:
            OSError: the diagnostic port could not be bound
        """
        sock = self._bind()
        self.port = sock.getsockname()[1]

        self._task = asyncio.create_task(self._server.serve(sockets=[sock]), name="health-server")
        while not self._server.started:
            if self._task.done():
                await self._task
                raise OSError(f"Health server failed to start on {self.host}:{self.port}")
            await asyncio.sleep(0.05)

        if self.logger:
            self.logger.info("health_server.started", {
                "url": f"http://{self.host}:{self.port}/health"
            })

    async def stop(self):
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        finally:
            self._task = None
        if self.logger:
            self.logger.info("health_server.stopped", {})
