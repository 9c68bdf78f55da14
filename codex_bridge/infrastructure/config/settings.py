"""
Bridge Configuration Settings - Single Source of Truth
======================================================
All bridge configuration using Pydantic Settings.

Every section reads its own environment prefix:
    BRIDGE_PORT=4601 CODEX_APP_SERVER_URL=ws://10.0.0.5:4500 LOG_LEVEL=DEBUG
"""

from pydantic_settings import BaseSettings
from pydantic import AliasChoices, Field, field_validator
from typing import Optional
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# === CLIENT-FACING SERVER ===

class BridgeServerSettings(BaseSettings):
    """Client-facing WebSocket server and diagnostic endpoint"""
    host: str = Field(default="0.0.0.0", description="Bridge listen host")
    port: int = Field(default=4501, ge=0, le=65535, description="Bridge listen port (0 = ephemeral)")

    health_enabled: bool = Field(default=True, description="Serve the HTTP diagnostic endpoint")
    health_host: str = Field(default="127.0.0.1", description="Diagnostic endpoint host")
    health_port: Optional[int] = Field(default=None, ge=0, le=65535,
                                       description="Diagnostic endpoint port (default: port + 1)")

    ping_interval_seconds: float = Field(default=30.0, description="WebSocket keepalive ping interval")
    ping_timeout_seconds: float = Field(default=10.0, description="WebSocket keepalive pong timeout")
    close_timeout_seconds: float = Field(default=5.0, description="WebSocket closing handshake timeout")
    max_message_size: int = Field(default=2**20, description="Maximum inbound message size in bytes")

    @property
    def resolved_health_port(self) -> int:
        if self.health_port is not None:
            return self.health_port
        return self.port + 1 if self.port else 0

    class Config:
        env_prefix = "BRIDGE_"


# === UPSTREAM APP-SERVER ===

class AppServerSettings(BaseSettings):
    """Upstream Codex app-server endpoint and process supervision"""
    url: str = Field(default="ws://127.0.0.1:4500", description="Upstream WebSocket URL")
    spawn: bool = Field(
        default=True,
        validation_alias=AliasChoices("CODEX_APP_SERVER_SPAWN", "START_APP_SERVER"),
        description="Spawn the app-server as a child process (legacy env: START_APP_SERVER)"
    )
    command: str = Field(default="codex", description="Executable used to spawn the app-server")
    connect_timeout_ms: int = Field(default=5000, gt=0, description="Upstream connect timeout (session create, probe)")
    startup_timeout_seconds: float = Field(default=2.0, ge=0, description="Max wait for the spawned app-server to report ready")
    stop_timeout_seconds: float = Field(default=5.0, ge=0, description="Grace period between SIGTERM and SIGKILL")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"Invalid app-server URL: '{v}'. Expected ws:// or wss://")
        return v

    @property
    def connect_timeout_seconds(self) -> float:
        return self.connect_timeout_ms / 1000.0

    class Config:
        env_prefix = "CODEX_APP_SERVER_"
        populate_by_name = True


# === LOGGING ===

class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: LogLevel = Field(default=LogLevel.INFO)
    console_enabled: bool = Field(default=True)
    file_enabled: bool = Field(default=False)
    structured_logging: bool = Field(default=True)
    log_dir: str = Field(default="logs")
    max_file_size_mb: int = Field(default=100)
    backup_count: int = Field(default=5)

    class Config:
        env_prefix = "LOG_"


# === MAIN APPLICATION SETTINGS ===

class BridgeSettings(BaseSettings):
    """Main bridge settings - Single Source of Truth"""

    app_name: str = Field(default="Codex Bridge Server")
    version: str = Field(default="1.0.0")

    server: BridgeServerSettings = Field(default_factory=BridgeServerSettings)
    app_server: AppServerSettings = Field(default_factory=AppServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"
        case_sensitive = False
        extra = "ignore"
