"""
WebSocket Connection Lifecycle Management
==========================================
Components for client connections and the sessions they own.

Components:
- ClientRegistry: client id -> connection
- SessionRegistry: session id -> upstream connection
- ConnectionLifecycle: accept, message loop, cleanup
"""

from .client_registry import ClientConnection, ClientRegistry, ConnectionState
from .session_registry import SessionRecord, SessionRegistry
from .connection_lifecycle import ConnectionLifecycle

__all__ = [
    "ClientConnection",
    "ClientRegistry",
    "ConnectionLifecycle",
    "ConnectionState",
    "SessionRecord",
    "SessionRegistry",
]
