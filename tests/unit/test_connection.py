"""
Unit tests for the accepted-connection wrapper.
"""

from conftest import make_handle

from tcpecho.core.connection import ConnectionState, ReadStatus


class TestConnectionHandle:
    """Tests for ConnectionHandle."""

    def test_receive_data(self, socket_pair):
        """Test that received bytes come back as a DATA result."""
        server_side, client_side = socket_pair
        conn = make_handle(server_side)

        client_side.sendall(b"hello\n")
        result = conn.receive()

        assert result.status is ReadStatus.DATA
        assert result.data == b"hello\n"
        assert conn.bytes_received == 6

    def test_receive_closed(self, socket_pair):
        """Test that a clean peer close is reported as CLOSED."""
        server_side, client_side = socket_pair
        conn = make_handle(server_side)

        client_side.close()
        result = conn.receive()

        assert result.status is ReadStatus.CLOSED
        assert result.data == b""

    def test_receive_timeout(self, socket_pair):
        """Test that silence is reported as TIMEOUT, not raised."""
        server_side, _ = socket_pair
        conn = make_handle(server_side, recv_timeout=0.05)

        result = conn.receive()

        assert result.status is ReadStatus.TIMEOUT
        assert result.error is None

    def test_receive_reads_at_most_buffer_size(self, socket_pair):
        """Test that one read never returns more than the buffer size."""
        server_side, client_side = socket_pair
        conn = make_handle(server_side, buffer_size=16)

        client_side.sendall(b"x" * 40)
        result = conn.receive()

        assert result.status is ReadStatus.DATA
        assert len(result.data) == 16

    def test_timeout_counter(self, socket_pair):
        """Test counting and resetting consecutive timeouts."""
        server_side, _ = socket_pair
        conn = make_handle(server_side)

        assert conn.state is ConnectionState.ACTIVE
        assert conn.note_timeout() == 1
        assert conn.note_timeout() == 2
        assert conn.state is ConnectionState.TIMEOUT_WARN

        conn.reset_timeouts()

        assert conn.timeout_count == 0
        assert conn.state is ConnectionState.ACTIVE

    def test_send(self, socket_pair):
        """Test sending to the peer."""
        server_side, client_side = socket_pair
        conn = make_handle(server_side)

        assert conn.send(b"pong\n") is True
        client_side.settimeout(1.0)
        assert client_side.recv(16) == b"pong\n"

    def test_send_after_close_fails(self, socket_pair):
        """Test that sending on a closed connection reports failure."""
        server_side, _ = socket_pair
        conn = make_handle(server_side)
        conn.close()

        assert conn.send(b"late") is False
        assert conn.last_error is not None

    def test_close_is_idempotent(self, socket_pair):
        """Test that close() can be called repeatedly."""
        server_side, client_side = socket_pair
        conn = make_handle(server_side)

        conn.close()
        conn.close()

        assert conn.is_closed
        client_side.settimeout(1.0)
        assert client_side.recv(16) == b""

    def test_notice_survives_close_with_unread_data(self, socket_pair):
        """Test that a notice sent right before close reaches the peer."""
        server_side, client_side = socket_pair
        conn = make_handle(server_side)

        client_side.sendall(b"unread data")
        conn.send(b"Error: Invalid message format\n")
        conn.close()

        client_side.settimeout(1.0)
        assert client_side.recv(64) == b"Error: Invalid message format\n"

    def test_context_manager_closes(self, socket_pair):
        """Test that leaving the with block closes the connection."""
        server_side, _ = socket_pair

        with make_handle(server_side) as conn:
            assert not conn.is_closed

        assert conn.is_closed

    def test_ids_are_unique(self, socket_pair):
        """Test that each connection gets its own id."""
        server_side, client_side = socket_pair
        first = make_handle(server_side)
        second = make_handle(client_side)

        assert first.id != second.id
        assert len(first.id) == 8
