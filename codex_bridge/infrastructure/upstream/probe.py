"""
Diagnostic Probe
================
One end-to-end round trip against the upstream app-server:

    connect -> send ping -> wait for any reply -> close

The probe never touches the session registry and never raises; every
failure mode is reported as an outcome.
"""

import asyncio
import itertools
import json
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException

from ...core.exceptions import UpstreamUnavailableError
from ...core.logger import StructuredLogger
from .connector import UpstreamConnector


class ProbeOutcome(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    MALFORMED_RESPONSE = "malformed_response"


@dataclass
class ProbeResult:
    outcome: ProbeOutcome
    latency_ms: float
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ProbeOutcome.OK

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


class DiagnosticProbe:
    """Checks upstream reachability with a transient connection"""

    def __init__(self, connector: UpstreamConnector, logger: Optional[StructuredLogger] = None):
        self.connector = connector
        self.logger = logger
        self._ping_ids = itertools.count(1)

    async def run(self) -> ProbeResult:
        started = time.monotonic()

        def elapsed_ms() -> float:
            return round((time.monotonic() - started) * 1000, 2)

        try:
            connection = await self.connector.connect()
        except UpstreamUnavailableError as e:
            outcome = ProbeOutcome.TIMEOUT if e.timed_out else ProbeOutcome.CONNECTION_ERROR
            return self._report(ProbeResult(outcome, elapsed_ms(), e.reason))

        try:
            ping = {"jsonrpc": "2.0", "id": next(self._ping_ids), "method": "ping"}
            await connection.send(json.dumps(ping))
            raw = await asyncio.wait_for(connection.recv(), timeout=self.connector.connect_timeout)
            latency = elapsed_ms()

            try:
                reply = json.loads(raw)
            except (ValueError, RecursionError) as e:
                return self._report(ProbeResult(ProbeOutcome.MALFORMED_RESPONSE, latency, str(e)))
            if not isinstance(reply, dict):
                return self._report(ProbeResult(ProbeOutcome.MALFORMED_RESPONSE, latency,
                                                f"expected JSON object, got {type(reply).__name__}"))

            return self._report(ProbeResult(ProbeOutcome.OK, latency))

        except asyncio.TimeoutError:
            return self._report(ProbeResult(ProbeOutcome.TIMEOUT, elapsed_ms(), "no response from app-server"))
        except (ConnectionClosed, WebSocketException, OSError) as e:
            return self._report(ProbeResult(ProbeOutcome.CONNECTION_ERROR, elapsed_ms(), str(e) or type(e).__name__))
        finally:
            await connection.close()

    def _report(self, result: ProbeResult) -> ProbeResult:
        if self.logger:
            if result.ok:
                self.logger.debug("diagnostic_probe.ok", {"latency_ms": result.latency_ms})
            else:
                self.logger.warning("diagnostic_probe.failed", result.to_dict())
        return result
