"""
WebSocket API Module
====================
Client-facing side of the bridge.

Architecture:
- lifecycle/: client registry, session registry, per-connection state machine
- handlers/: JSON-RPC request dispatch
- broadcasters/: upstream -> client stream forwarding
"""

__all__ = []
