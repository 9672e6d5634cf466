"""
Unit tests for server and client configuration.
"""

import socket

import pytest

from tcpecho.config import ServerConfig, ClientConfig


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        """Test the service constants."""
        config = ServerConfig()

        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.backlog == socket.SOMAXCONN
        assert config.max_clients == 100
        assert config.recv_timeout == 10.0
        assert config.max_timeouts == 3
        assert config.buffer_size == 4096
        assert config.max_message_length == 1024
        assert config.poll_interval == pytest.approx(0.1)

    def test_defaults_validate(self):
        """Test that the defaults pass validation."""
        ServerConfig().validate()

    def test_port_zero_allowed(self):
        """Test that port 0 (OS picks) is accepted."""
        ServerConfig(port=0).validate()

    @pytest.mark.parametrize("kwargs", [
        {"port": -1},
        {"port": 65536},
        {"max_clients": 0},
        {"recv_timeout": 0},
        {"max_timeouts": -1},
        {"poll_interval": 0},
        {"max_message_length": 0},
        {"buffer_size": 1024},
        {"log_format": "xml"},
        {"log_level": "LOUD"},
    ])
    def test_invalid_values(self, kwargs):
        """Test that bad values are rejected."""
        with pytest.raises(ValueError):
            ServerConfig(**kwargs).validate()

    def test_from_env(self, monkeypatch):
        """Test reading configuration from the environment."""
        monkeypatch.setenv("ECHO_HOST", "127.0.0.1")
        monkeypatch.setenv("ECHO_PORT", "9000")
        monkeypatch.setenv("ECHO_MAX_CLIENTS", "7")
        monkeypatch.setenv("ECHO_RECV_TIMEOUT", "2.5")
        monkeypatch.setenv("ECHO_LOG_FORMAT", "json")

        config = ServerConfig.from_env()

        assert config.host == "127.0.0.1"
        assert config.port == 9000
        assert config.max_clients == 7
        assert config.recv_timeout == 2.5
        assert config.log_format == "json"


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_defaults(self):
        """Test the client constants."""
        config = ClientConfig()

        assert config.host == "127.0.0.1"
        assert config.port == 8080
        assert config.timeout == 10.0
        assert config.auto_reconnect is False
        assert config.reconnect_delay == 10.0
        assert config.max_reconnect_attempts == 3
        assert config.buffer_size == 4096

    @pytest.mark.parametrize("kwargs", [
        {"port": 0},
        {"port": 70000},
        {"timeout": 0},
        {"reconnect_delay": -1},
        {"max_reconnect_attempts": 0},
        {"buffer_size": 1},
    ])
    def test_invalid_values(self, kwargs):
        """Test that bad values are rejected."""
        with pytest.raises(ValueError):
            ClientConfig(**kwargs).validate()

    def test_from_env(self, monkeypatch):
        """Test reading client configuration from the environment."""
        monkeypatch.setenv("ECHO_SERVER_HOST", "10.0.0.5")
        monkeypatch.setenv("ECHO_SERVER_PORT", "9001")
        monkeypatch.setenv("ECHO_AUTO_RECONNECT", "yes")
        monkeypatch.setenv("ECHO_RECONNECT_DELAY", "0.5")
        monkeypatch.setenv("ECHO_RECONNECT_ATTEMPTS", "5")

        config = ClientConfig.from_env()

        assert config.host == "10.0.0.5"
        assert config.port == 9001
        assert config.auto_reconnect is True
        assert config.reconnect_delay == 0.5
        assert config.max_reconnect_attempts == 5
