"""
WebSocket Broadcasters
======================
- UpstreamMessageRouter: upstream messages -> owning client as stream notifications
"""

from .upstream_router import UpstreamMessageRouter

__all__ = ["UpstreamMessageRouter"]
