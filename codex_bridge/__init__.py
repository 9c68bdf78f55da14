"""
Codex Bridge
============
Multiplexes sessions from many WebSocket clients onto per-session
connections to a single Codex app-server, translating between the
client-facing JSON-RPC envelope and the app-server's own messages.

    codex-bridge            # or: python -m codex_bridge
"""

__version__ = "1.0.0"
