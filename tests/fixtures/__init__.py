"""
Shared test helpers for the test suite.

- connections: in-memory stand-ins for client and upstream WebSockets
- bridge_client: a real WebSocket client that speaks the bridge protocol
"""

from tests.fixtures.connections import FakeClientSocket, FakeUpstream, wait_until
from tests.fixtures.bridge_client import BridgeClient

__all__ = [
    'BridgeClient',
    'FakeClientSocket',
    'FakeUpstream',
    'wait_until',
]
