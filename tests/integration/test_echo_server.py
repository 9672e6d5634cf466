"""
Integration tests for EchoServer over real sockets.
"""

import dataclasses
import socket
import threading
import time

import pytest

from conftest import wait_until, recv_until_closed, recv_exactly

from tcpecho import EchoServer, ServerConfig
from tcpecho.server import BUSY_NOTICE, INVALID_NOTICE


def _echo(sock: socket.socket, message: bytes) -> bytes:
    sock.sendall(message)
    return recv_exactly(sock, len(message))


class TestEcho:
    """Echo behaviour."""

    def test_round_trip(self, connect):
        """Test that a valid message comes back byte for byte."""
        sock = connect()
        assert _echo(sock, b"hello\n") == b"hello\n"

    def test_sequential_messages(self, connect):
        """Test several messages on one connection."""
        sock = connect()
        for message in (b"one\n", b"two\n", "трі ✓\n".encode("utf-8")):
            assert _echo(sock, message) == message

    def test_concurrent_clients(self, connect):
        """Test that several clients are served at the same time."""
        socks = [connect() for _ in range(4)]
        results = {}

        def talk(index, sock):
            results[index] = _echo(sock, f"client {index}\n".encode())

        threads = [threading.Thread(target=talk, args=(i, s)) for i, s in enumerate(socks)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(3.0)

        assert results == {i: f"client {i}\n".encode() for i in range(4)}

    def test_invalid_message_closes(self, connect, echo_server):
        """Test that an invalid message gets the notice and a close."""
        sock = connect()
        sock.sendall(b"bad\x01\n")

        assert recv_until_closed(sock) == INVALID_NOTICE
        assert wait_until(lambda: echo_server.stats["closed"].get("invalid") == 1)

    def test_idle_connection_times_out(self, connect, echo_server, server_config):
        """Test that a silent client is closed after four receive timeouts."""
        sock = connect()
        started = time.monotonic()

        assert recv_until_closed(sock, timeout=5.0) == b""

        elapsed = time.monotonic() - started
        assert elapsed >= server_config.recv_timeout * (server_config.max_timeouts + 1) * 0.9
        assert wait_until(lambda: echo_server.stats["closed"].get("timeout") == 1)

    def test_stats(self, connect, echo_server):
        """Test the accepted and echoed counters."""
        sock = connect()
        _echo(sock, b"a\n")
        _echo(sock, b"b\n")

        stats = echo_server.stats
        assert stats["accepted"] == 1
        assert stats["messages_echoed"] == 2
        assert stats["active"] == 1


class TestAdmission:
    """Connection cap enforced at accept time."""

    @pytest.fixture
    def small_server(self, server_config):
        config = dataclasses.replace(server_config, max_clients=2, recv_timeout=2.0)
        server = EchoServer(config)
        assert server.start()
        yield server
        server.stop()

    def test_busy_notice_when_full(self, small_server):
        """Test that the client over the cap is told to go away."""
        first = socket.create_connection(small_server.address, timeout=2.0)
        second = socket.create_connection(small_server.address, timeout=2.0)
        try:
            assert _echo(first, b"1\n") == b"1\n"
            assert _echo(second, b"2\n") == b"2\n"
            assert small_server.active_clients == 2

            third = socket.create_connection(small_server.address, timeout=2.0)
            try:
                assert recv_until_closed(third) == BUSY_NOTICE
            finally:
                third.close()

            assert small_server.active_clients == 2
            assert wait_until(lambda: small_server.stats["rejected"] == 1)
        finally:
            first.close()
            second.close()

    def test_busy_notice_reaches_client_that_sent_first(self, small_server):
        """Test that a rejected client which writes before reading still gets the notice."""
        held = [socket.create_connection(small_server.address, timeout=2.0) for _ in range(2)]
        try:
            for index, sock in enumerate(held):
                assert _echo(sock, f"{index}\n".encode()) == f"{index}\n".encode()

            for _ in range(10):
                with socket.create_connection(small_server.address, timeout=2.0) as rejected:
                    rejected.sendall(b"hello\n")
                    assert recv_until_closed(rejected) == BUSY_NOTICE

            assert wait_until(lambda: small_server.stats["rejected"] == 10)
            assert small_server.active_clients == 2
        finally:
            for sock in held:
                sock.close()

    def test_slot_reused_after_close(self, small_server):
        """Test that a freed slot admits the next client."""
        first = socket.create_connection(small_server.address, timeout=2.0)
        second = socket.create_connection(small_server.address, timeout=2.0)
        try:
            _echo(first, b"1\n")
            _echo(second, b"2\n")

            first.close()
            assert wait_until(lambda: small_server.active_clients == 1)

            fourth = socket.create_connection(small_server.address, timeout=2.0)
            try:
                assert _echo(fourth, b"4\n") == b"4\n"
                assert small_server.active_clients == 2
            finally:
                fourth.close()
        finally:
            second.close()


class TestLifecycle:
    """Start, stop and serve."""

    def test_stop_closes_every_connection(self, echo_server, connect):
        """Test that stop() leaves no connection or worker behind."""
        socks = [connect() for _ in range(3)]
        for sock in socks:
            _echo(sock, b"x\n")

        echo_server.stop()

        assert echo_server.active_clients == 0
        assert not echo_server.is_running
        assert not [t for t in threading.enumerate() if t.name.startswith("echo-conn-")]
        for sock in socks:
            assert recv_until_closed(sock) == b""

    def test_stop_is_idempotent(self, echo_server):
        """Test that stop() can be called repeatedly."""
        echo_server.stop()
        echo_server.stop()
        assert not echo_server.is_running

    def test_start_twice(self, echo_server):
        """Test that starting a running server is a no-op success."""
        address = echo_server.address
        assert echo_server.start() is True
        assert echo_server.address == address

    def test_start_fails_on_busy_port(self, server_config):
        """Test that a port already listened on makes start() fail."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupier:
            occupier.bind(("127.0.0.1", 0))
            occupier.listen(1)
            port = occupier.getsockname()[1]

            server = EchoServer(dataclasses.replace(server_config, port=port))
            assert server.start() is False
            assert not server.is_running
            server.stop()

    def test_invalid_config_rejected(self):
        """Test that a bad configuration fails before binding."""
        with pytest.raises(ValueError):
            EchoServer(ServerConfig(max_clients=0))

    def test_serve_until_cancelled(self, server_config):
        """Test that serve() returns once the token is set."""
        server = EchoServer(server_config)
        cancel = threading.Event()
        result = {}

        runner = threading.Thread(target=lambda: result.setdefault("ok", server.serve(cancel)))
        runner.start()
        try:
            assert wait_until(lambda: server.is_running)
            with socket.create_connection(server.address, timeout=2.0) as sock:
                assert _echo(sock, b"served\n") == b"served\n"
        finally:
            cancel.set()
            runner.join(5.0)

        assert not runner.is_alive()
        assert result == {"ok": True}
        assert not server.is_running

    def test_context_manager(self, server_config):
        """Test running the server in a with block."""
        with EchoServer(server_config) as server:
            with socket.create_connection(server.address, timeout=2.0) as sock:
                assert _echo(sock, b"ctx\n") == b"ctx\n"
        assert not server.is_running
