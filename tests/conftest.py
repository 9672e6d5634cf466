"""
pytest configuration and fixtures.
"""

import socket
import time
from typing import Callable, Generator

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tcpecho import EchoServer, ServerConfig, ClientConfig
from tcpecho.core import ConnectionHandle


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def server_config() -> ServerConfig:
    """Server configuration with short timeouts so tests stay fast."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        max_clients=5,
        recv_timeout=0.2,
        poll_interval=0.02,
        log_level="WARNING",
    )


@pytest.fixture
def echo_server(server_config: ServerConfig) -> Generator[EchoServer, None, None]:
    """A running echo server."""
    server = EchoServer(server_config)
    assert server.start()

    yield server

    server.stop()


@pytest.fixture
def client_config(echo_server: EchoServer) -> ClientConfig:
    """Client configuration pointing at the running echo server."""
    host, port = echo_server.address
    return ClientConfig(
        host=host,
        port=port,
        timeout=2.0,
        reconnect_delay=0.05,
        max_reconnect_attempts=3,
        poll_interval=0.02,
    )


@pytest.fixture
def connect(echo_server: EchoServer) -> Generator[Callable[[], socket.socket], None, None]:
    """Factory for raw sockets connected to the running echo server."""
    opened = []

    def _connect() -> socket.socket:
        sock = socket.create_connection(echo_server.address, timeout=2.0)
        opened.append(sock)
        return sock

    yield _connect

    for sock in opened:
        sock.close()


@pytest.fixture
def socket_pair() -> Generator[tuple, None, None]:
    """A connected (server_side, client_side) socket pair."""
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    server_side.close()
    client_side.close()


def make_handle(sock: socket.socket, **kwargs) -> ConnectionHandle:
    """Wrap one end of a socket pair as an accepted connection."""
    kwargs.setdefault("recv_timeout", 0.1)
    kwargs.setdefault("drain_timeout", 0.05)
    return ConnectionHandle(socket=sock, address=("127.0.0.1", 50000), **kwargs)


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def recv_until_closed(sock: socket.socket, timeout: float = 3.0) -> bytes:
    """Read everything until the peer closes the connection."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def recv_exactly(sock: socket.socket, size: int, timeout: float = 3.0) -> bytes:
    """Read exactly size bytes (or fewer if the peer closes first)."""
    sock.settimeout(timeout)
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data
