"""
Upstream (Codex app-server) access
==================================
- UpstreamConnector: bounded-timeout WebSocket connections to the app-server
- DiagnosticProbe: one-shot reachability round trip
- AppServerProcess: optional child process supervision
"""

from .app_server_process import AppServerProcess
from .connector import UpstreamConnector
from .probe import DiagnosticProbe, ProbeOutcome, ProbeResult

__all__ = [
    "AppServerProcess",
    "DiagnosticProbe",
    "ProbeOutcome",
    "ProbeResult",
    "UpstreamConnector",
]
