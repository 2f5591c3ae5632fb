"""
Unit tests for server configuration.
"""

import pytest

from expserver.config import ServerConfig


class TestServerConfig:

    def test_defaults_are_valid(self):
        config = ServerConfig()
        config.validate()

        assert config.address == "127.0.0.1"
        assert config.port == 7777
        assert config.transport == "zmq"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("EXP_ADDRESS", "node-7")
        monkeypatch.setenv("EXP_PORT", "9000")
        monkeypatch.setenv("EXP_TRANSPORT", "loopback")
        monkeypatch.setenv("EXP_BIND", "127.0.0.1")
        monkeypatch.setenv("EXP_POLL_TIMEOUT", "0.25")
        monkeypatch.setenv("EXP_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("EXP_LOG_FORMAT", "json")

        config = ServerConfig.from_env()

        assert config.address == "node-7"
        assert config.port == 9000
        assert config.transport == "loopback"
        assert config.bind == "127.0.0.1"
        assert config.poll_timeout == 0.25
        assert config.log_level == "DEBUG"
        assert config.log_format == "json"

    def test_from_env_defaults(self, monkeypatch):
        for name in ("EXP_ADDRESS", "EXP_PORT", "EXP_TRANSPORT", "EXP_BIND",
                     "EXP_POLL_TIMEOUT", "EXP_LOG_LEVEL", "EXP_LOG_FORMAT"):
            monkeypatch.delenv(name, raising=False)

        assert ServerConfig.from_env() == ServerConfig()

    @pytest.mark.parametrize("overrides,field", [
        ({"port": 0}, "port"),
        ({"port": 70000}, "port"),
        ({"transport": "carrier-pigeon"}, "transport"),
        ({"poll_timeout": 0}, "poll_timeout"),
        ({"send_timeout_ms": -1}, "send_timeout_ms"),
        ({"log_format": "xml"}, "log_format"),
        ({"log_level": "LOUD"}, "log_level"),
        ({"address": ""}, "address"),
    ])
    def test_validate_rejects(self, overrides, field):
        config = ServerConfig(**overrides)

        with pytest.raises(ValueError) as exc_info:
            config.validate()

        assert field.split("_")[0] in str(exc_info.value).lower()

    def test_log_level_case_insensitive(self):
        ServerConfig(log_level="debug").validate()
