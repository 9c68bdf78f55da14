"""
Test harnesses for the bridge: a mock Codex app-server and a scripted client.
"""

from .mock_app_server import MockAppServer

__all__ = ["MockAppServer"]
