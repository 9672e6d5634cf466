"""
=============================================================================
ECHO SERVICE CONFIGURATION
=============================================================================

Centralized configuration for the echo server and the echo client.

Both sides are configured with a dataclass so every tunable lives in one
place, is typed, and is validated once at construction time.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m tcpecho server --port 9000                      │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── ECHO_PORT=9000 python -m tcpecho server                   │
    │                                                                      │
    │   3. Default values (in these dataclasses)                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SERVICE CONSTANTS
=============================================================================

    Max concurrent connections ........ 100
    Server receive timeout ............ 10 s
    Consecutive timeouts tolerated .... 3
    Max validated message length ...... 1024 bytes
    Transport buffer .................. 4096 bytes
    Client socket timeout ............. 10 s
    Reconnect delay ................... 10 s
    Max reconnect attempts ............ 3

=============================================================================
"""

import os
import socket
from dataclasses import dataclass
from typing import Optional


MAX_CLIENTS = 100
RECV_TIMEOUT = 10.0
MAX_TIMEOUTS = 3
MAX_MESSAGE_LENGTH = 1024
BUFFER_SIZE = 4096
CLIENT_TIMEOUT = 10.0
RECONNECT_DELAY = 10.0
MAX_RECONNECT_ATTEMPTS = 3

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _validate_log_level(log_level: str) -> None:
    if log_level.upper() not in LOG_LEVELS:
        raise ValueError(f"Invalid log_level: {log_level!r}. Must be one of {LOG_LEVELS}.")


@dataclass
class ServerConfig:
    """
    Configuration for the echo server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, poll_interval

    CAPACITY SETTINGS
    - max_clients

    PER-CONNECTION SETTINGS
    - recv_timeout, max_timeouts, buffer_size, max_message_length

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IPv4 address to bind to. "0.0.0.0" listens on all interfaces.
    """

    port: int = 8080
    """
    The port number to listen on. 0 lets the OS pick a free port; the
    bound port is then available from EchoServer.address.
    """

    backlog: int = socket.SOMAXCONN
    """
    Maximum number of queued connections (OS maximum by default).
    """

    poll_interval: float = 0.1
    """
    How long the accept loop waits for a pending connection before it
    re-checks the running flag. Bounds how quickly stop() is observed.
    """

    # ─────────────────────────────────────────────────────────────────────
    # CAPACITY
    # ─────────────────────────────────────────────────────────────────────

    max_clients: int = MAX_CLIENTS
    """
    Maximum number of connections served at once. Connections arriving
    beyond this are sent the busy notice and closed at accept time.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PER-CONNECTION SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    recv_timeout: float = RECV_TIMEOUT
    """
    Receive timeout applied to every accepted connection, in seconds.
    Also bounds how long stop() waits for an idle worker to notice.
    """

    max_timeouts: int = MAX_TIMEOUTS
    """
    Consecutive receive timeouts tolerated; one more closes the connection.
    """

    buffer_size: int = BUFFER_SIZE
    """
    Size of a single read. A read that fills the whole buffer is treated
    as an oversized message.
    """

    max_message_length: int = MAX_MESSAGE_LENGTH
    """
    Longest message the validator accepts, in bytes.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"
    """
    Session log format: 'text' for humans, 'json' for log aggregators.
    """

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        ECHO_HOST           Bind address (default: 0.0.0.0)
        ECHO_PORT           Listen port (default: 8080)
        ECHO_MAX_CLIENTS    Connection cap (default: 100)
        ECHO_RECV_TIMEOUT   Per-connection receive timeout (default: 10)
        ECHO_LOG_LEVEL      Logging level (default: INFO)
        ECHO_LOG_FORMAT     Session log format (default: text)
        """
        return cls(
            host=os.getenv("ECHO_HOST", "0.0.0.0"),
            port=int(os.getenv("ECHO_PORT", "8080")),
            max_clients=int(os.getenv("ECHO_MAX_CLIENTS", str(MAX_CLIENTS))),
            recv_timeout=float(os.getenv("ECHO_RECV_TIMEOUT", str(RECV_TIMEOUT))),
            log_level=os.getenv("ECHO_LOG_LEVEL", "INFO"),
            log_format=os.getenv("ECHO_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called by EchoServer before anything touches the network, so a bad
        value fails at startup instead of on the first connection.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.max_clients < 1:
            raise ValueError("max_clients must be >= 1")

        if self.recv_timeout <= 0:
            raise ValueError("recv_timeout must be > 0")

        if self.max_timeouts < 0:
            raise ValueError("max_timeouts must be >= 0")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.max_message_length < 1:
            raise ValueError("max_message_length must be >= 1")

        if self.buffer_size <= self.max_message_length:
            raise ValueError("buffer_size must be > max_message_length")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"Invalid log_format: {self.log_format!r}. Must be one of {LOG_FORMATS}.")

        _validate_log_level(self.log_level)


@dataclass
class ClientConfig:
    """
    Configuration for the echo client.

    The reconnect settings only matter when auto_reconnect is on; with it
    off, a lost connection stays lost until connect_to_server() is called
    again.
    """

    host: str = "127.0.0.1"
    port: int = 8080

    timeout: Optional[float] = CLIENT_TIMEOUT
    """
    Socket send/receive timeout in seconds.
    """

    auto_reconnect: bool = False
    reconnect_delay: float = RECONNECT_DELAY
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS

    buffer_size: int = BUFFER_SIZE
    poll_interval: float = 0.1
    """
    How long the receive loop waits for data before re-checking whether
    it should keep running. Bounds how long stop_receiving() blocks.
    """

    encoding: str = "utf-8"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """
        Create configuration from environment variables.

        ECHO_SERVER_HOST         Server address (default: 127.0.0.1)
        ECHO_SERVER_PORT         Server port (default: 8080)
        ECHO_TIMEOUT             Socket timeout (default: 10)
        ECHO_AUTO_RECONNECT      Enable reconnection (default: off)
        ECHO_RECONNECT_DELAY     Delay between attempts (default: 10)
        ECHO_RECONNECT_ATTEMPTS  Attempts per reconnect (default: 3)
        ECHO_LOG_LEVEL           Logging level (default: INFO)
        """
        return cls(
            host=os.getenv("ECHO_SERVER_HOST", "127.0.0.1"),
            port=int(os.getenv("ECHO_SERVER_PORT", "8080")),
            timeout=float(os.getenv("ECHO_TIMEOUT", str(CLIENT_TIMEOUT))),
            auto_reconnect=_env_bool("ECHO_AUTO_RECONNECT", False),
            reconnect_delay=float(os.getenv("ECHO_RECONNECT_DELAY", str(RECONNECT_DELAY))),
            max_reconnect_attempts=int(
                os.getenv("ECHO_RECONNECT_ATTEMPTS", str(MAX_RECONNECT_ATTEMPTS))
            ),
            log_level=os.getenv("ECHO_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 1-65535.")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must be >= 0")

        if self.max_reconnect_attempts < 1:
            raise ValueError("max_reconnect_attempts must be >= 1")

        if self.buffer_size < 2:
            raise ValueError("buffer_size must be >= 2")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        _validate_log_level(self.log_level)
