"""
Infrastructure Configuration
============================
BridgeSettings is the single source of truth for bridge configuration.
Settings are created once in the entry point and passed down explicitly.
"""

from .settings import (
    AppServerSettings,
    BridgeServerSettings,
    BridgeSettings,
    LoggingSettings,
    LogLevel,
)

__all__ = [
    'AppServerSettings',
    'BridgeServerSettings',
    'BridgeSettings',
    'LoggingSettings',
    'LogLevel',
]
