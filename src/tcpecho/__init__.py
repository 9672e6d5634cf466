"""
=============================================================================
TCPECHO - Bounded-Concurrency TCP Echo Service
=============================================================================

A TCP echo server that serves a bounded number of clients at once and
validates what it echoes, plus a client with a background receiver and
bounded automatic reconnection.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    tcpecho/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m tcpecho)
    ├── server.py            # EchoServer: accept loop, admission, workers
    ├── client.py            # EchoClient: connect/receive/reconnect
    ├── config.py            # ServerConfig / ClientConfig dataclasses
    ├── validation.py        # InputValidator
    ├── session_log.py       # Per-connection session log records
    ├── console.py           # Interactive stdin loop for the client
    └── core/                # Low-level components
        ├── socket_server.py # Listening socket
        ├── connection.py    # Accepted connection wrapper
        └── workers.py       # Thread-per-connection bookkeeping

=============================================================================
QUICK START
=============================================================================

    from tcpecho import EchoServer, EchoClient, ServerConfig, ClientConfig

    server = EchoServer(ServerConfig(port=9000))
    server.start()

    client = EchoClient(ClientConfig(port=9000), on_message=print)
    client.connect_to_server()
    client.start_receiving()
    client.send_message("hello\\n")     # prints "hello"

    client.close()
    server.stop()

=============================================================================
"""

__version__ = "1.0.0"

from .server import EchoServer
from .client import EchoClient, ClientState
from .config import ServerConfig, ClientConfig
from .validation import InputValidator, validate_message

__all__ = [
    "EchoServer",
    "EchoClient",
    "ClientState",
    "ServerConfig",
    "ClientConfig",
    "InputValidator",
    "validate_message",
    "__version__",
]
