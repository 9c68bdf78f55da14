"""
Tests for bridge settings
=========================
Defaults, environment overrides per section prefix, and validation.
"""

import pytest
from pydantic import ValidationError

from codex_bridge.infrastructure.config.settings import (
    AppServerSettings,
    BridgeServerSettings,
    BridgeSettings,
    LogLevel,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("BRIDGE_HOST", "BRIDGE_PORT", "BRIDGE_HEALTH_PORT", "CODEX_APP_SERVER_URL",
                 "CODEX_APP_SERVER_SPAWN", "START_APP_SERVER", "CODEX_APP_SERVER_CONNECT_TIMEOUT_MS", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:

    def test_defaults(self):
        settings = BridgeSettings()

        assert settings.version == "1.0.0"
        assert settings.server.host == "0.0.0.0"
        assert settings.server.port == 4501
        assert settings.app_server.url == "ws://127.0.0.1:4500"
        assert settings.app_server.connect_timeout_ms == 5000
        assert settings.app_server.connect_timeout_seconds == 5.0
        assert settings.logging.level == LogLevel.INFO

    def test_health_port_follows_bridge_port(self):
        assert BridgeServerSettings(port=4601).resolved_health_port == 4602
        assert BridgeServerSettings(port=4601, health_port=9000).resolved_health_port == 9000
        assert BridgeServerSettings(port=0).resolved_health_port == 0


class TestEnvironment:

    def test_section_prefixes(self, monkeypatch):
        monkeypatch.setenv("BRIDGE_PORT", "4601")
        monkeypatch.setenv("CODEX_APP_SERVER_URL", "ws://10.0.0.5:4500")
        monkeypatch.setenv("CODEX_APP_SERVER_SPAWN", "false")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = BridgeSettings()

        assert settings.server.port == 4601
        assert settings.app_server.url == "ws://10.0.0.5:4500"
        assert settings.app_server.spawn is False
        assert settings.logging.level == LogLevel.DEBUG

    def test_non_numeric_port_is_rejected(self, monkeypatch):
        monkeypatch.setenv("BRIDGE_PORT", "not-a-port")

        with pytest.raises(ValidationError):
            BridgeServerSettings()


class TestValidation:

    def test_url_must_be_websocket(self):
        with pytest.raises(ValidationError):
            AppServerSettings(url="http://127.0.0.1:4500")

    def test_secure_websocket_url_is_accepted(self):
        assert AppServerSettings(url="wss://codex.internal:443").url == "wss://codex.internal:443"

    def test_connect_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            AppServerSettings(connect_timeout_ms=0)

    def test_legacy_spawn_variable(self, monkeypatch):
        monkeypatch.setenv("START_APP_SERVER", "false")

        assert AppServerSettings().spawn is False

    def test_prefixed_spawn_variable_wins_over_legacy(self, monkeypatch):
        monkeypatch.setenv("CODEX_APP_SERVER_SPAWN", "true")
        monkeypatch.setenv("START_APP_SERVER", "false")

        assert AppServerSettings().spawn is True

    def test_spawn_by_field_name(self):
        assert AppServerSettings(spawn=False).spawn is False
