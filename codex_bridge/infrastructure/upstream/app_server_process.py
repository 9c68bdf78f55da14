"""
AppServerProcess - Codex app-server child process supervision
=============================================================
Spawns ``<command> app-server --listen <url>`` and mirrors its output into
the bridge log.

Readiness: the app-server announces itself on stderr ("listening"/"ready").
If nothing is announced within ``startup_timeout_seconds`` the bridge carries
on anyway; if the executable cannot be spawned at all, the bridge falls back
to an externally managed app-server at the same URL.

The process is not restarted when it exits. Sessions whose upstream
connections die with it are removed one by one by the upstream router, and
new sessions fail with SessionCreateFailed until the app-server is back.
"""

import asyncio
from typing import Optional, Set

from ...core.logger import StructuredLogger
from ..config.settings import AppServerSettings

READY_MARKERS = ("listening", "ready")
READY_GRACE_SECONDS = 0.5


class AppServerProcess:
    """Owns the optional app-server child process"""

    def __init__(self, settings: AppServerSettings, logger: Optional[StructuredLogger] = None):
        self.settings = settings
        self.logger = logger

        self._process: Optional[asyncio.subprocess.Process] = None
        self._ready = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()
        self.exit_code: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    async def start(self) -> bool:
        """
        Spawn the app-server if configured.

        Returns:
            True if a child process is running after startup, False otherwise
        """
        if not self.settings.spawn:
            if self.logger:
                self.logger.info("app_server_process.spawn_disabled", {"url": self.settings.url})
            return False

        if self.logger:
            self.logger.info("app_server_process.starting", {
                "command": self.settings.command,
                "url": self.settings.url
            })

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.settings.command, "app-server", "--listen", self.settings.url,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            if self.logger:
                self.logger.warning("app_server_process.spawn_failed", {
                    "command": self.settings.command,
                    "error": str(e),
                    "fallback": "external app-server"
                })
            self._process = None
            return False

        self._track(self._pump(self._process.stdout, "stdout"))
        self._track(self._pump(self._process.stderr, "stderr"))
        self._track(self._watch_exit(self._process))

        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.settings.startup_timeout_seconds)
            await asyncio.sleep(READY_GRACE_SECONDS)
        except asyncio.TimeoutError:
            if self.logger:
                self.logger.info("app_server_process.ready_timeout", {
                    "timeout_seconds": self.settings.startup_timeout_seconds,
                    "assumed": "starting"
                })

        return self.is_running

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _pump(self, stream: asyncio.StreamReader, stream_name: str):
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode('utf-8', errors='replace').strip()
            if not text:
                continue
            if self.logger:
                self.logger.info("app_server_process.output", {"stream": stream_name, "line": text})
            if stream_name == "stderr" and any(marker in text.lower() for marker in READY_MARKERS):
                self._ready.set()

    async def _watch_exit(self, process: asyncio.subprocess.Process):
        self.exit_code = await process.wait()
        if self.logger:
            self.logger.warning("app_server_process.exited", {
                "pid": process.pid,
                "exit_code": self.exit_code
            })
        if self._process is process:
            self._process = None

    async def stop(self):
        """Ask the child to terminate; kill it if it ignores SIGTERM."""
        process = self._process
        if process is not None and process.returncode is None:
            if self.logger:
                self.logger.info("app_server_process.stopping", {"pid": process.pid})
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=self.settings.stop_timeout_seconds)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                if self.logger:
                    self.logger.warning("app_server_process.kill", {"pid": process.pid})
                process.kill()
                await process.wait()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._process = None
