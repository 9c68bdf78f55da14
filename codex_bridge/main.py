"""
Codex Bridge - process entry point
==================================
Composition root: settings are created once here and passed down.

Startup:  settings -> logging -> app-server process -> bridge -> health endpoint
Shutdown: SIGINT/SIGTERM -> notify + close clients -> close sessions
          -> stop health endpoint -> terminate app-server -> exit 0

Any startup failure (invalid settings, port already in use, ...) exits 1.
"""

import asyncio
import signal
import sys
from typing import Optional

from pydantic import ValidationError

from .api.bridge_server import BridgeServer
from .api.health_server import HealthServer
from .core.logger import configure_logging, get_logger
from .infrastructure.config.settings import BridgeSettings
from .infrastructure.upstream.app_server_process import AppServerProcess


def _log_configuration(logger, settings: BridgeSettings):
    logger.info("bridge.configuration", {
        "app_name": settings.app_name,
        "version": settings.version,
        "listen": f"{settings.server.host}:{settings.server.port}",
        "app_server_url": settings.app_server.url,
        "spawn_app_server": settings.app_server.spawn,
        "connect_timeout_ms": settings.app_server.connect_timeout_ms,
        "health_enabled": settings.server.health_enabled,
        "log_level": settings.logging.level.value
    })


async def run_bridge(settings: BridgeSettings) -> int:
    """
    Run the bridge until a termination signal arrives.

    Returns:
        Process exit status
    """
    logger = get_logger("codex_bridge.main")
    _log_configuration(logger, settings)

    stop_event = asyncio.Event()
    received = {}

    def request_stop(sig: signal.Signals):
        received["signal"] = sig.name
        stop_event.set()

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop, sig)
            installed.append(sig)
        except NotImplementedError:
            # No loop signal support on this platform; Ctrl+C still raises KeyboardInterrupt
            pass

    try:
        return await _serve_until_stopped(settings, logger, stop_event, received)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def _serve_until_stopped(settings: BridgeSettings, logger, stop_event: asyncio.Event, received: dict) -> int:
    app_server = AppServerProcess(settings.app_server, logger=get_logger("codex_bridge.app_server"))
    bridge = BridgeServer(settings)
    health: Optional[HealthServer] = None

    try:
        await app_server.start()
        await bridge.start()
        if settings.server.health_enabled:
            health = HealthServer(
                bridge,
                settings.server.health_host,
                settings.server.resolved_health_port,
                logger=get_logger("codex_bridge.health"),
            )
            await health.start()
    except Exception as e:
        logger.error("bridge.startup_failed", {
            "error": str(e),
            "error_type": type(e).__name__
        }, exc_info=True)
        await bridge.stop()
        await app_server.stop()
        return 1

    logger.info("bridge.ready", {"url": f"ws://{settings.server.host}:{bridge.port}"})

    await stop_event.wait()

    logger.info("bridge.shutting_down", {"signal": received.get("signal")})
    await bridge.stop()
    if health:
        await health.stop()
    await app_server.stop()
    logger.info("bridge.shutdown_complete", {})
    return 0


def main() -> None:
    try:
        settings = BridgeSettings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(settings.logging)

    try:
        exit_code = asyncio.run(run_bridge(settings))
    except KeyboardInterrupt:
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
