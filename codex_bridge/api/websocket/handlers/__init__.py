"""
WebSocket Message Handlers
==========================
- RequestDispatcher: session.create / session.close / send / stream
"""

from .request_dispatcher import RequestDispatcher

__all__ = ["RequestDispatcher"]
