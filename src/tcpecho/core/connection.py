"""
=============================================================================
CONNECTION HANDLE
=============================================================================

This module wraps a single accepted client socket with the state the echo
worker needs: a receive timeout, a consecutive-timeout counter and a
lifecycle state.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

The echo service does no framing. A "message" is whatever one recv()
returns, up to the buffer size:

    Client sends:
        send("hello\\n")
        send("world\\n")

    Server might receive:
        recv() → "hello\\nworld\\n"   (echoed back as one chunk)
        recv() → "hel"                (echoed back as-is)

Because there is no delimiter, a read that fills the whole buffer cannot
be told apart from the start of a longer message. The worker treats that
case as an oversized message and closes the connection.

=============================================================================
READ RESULTS INSTEAD OF EXCEPTIONS
=============================================================================

receive() never raises for socket conditions. It returns a ReadResult so
the worker can dispatch on the outcome in one place:

    ┌────────────┬──────────────────────────────────────────────┐
    │ DATA       │ one or more bytes arrived                    │
    │ CLOSED     │ recv() returned b"" (peer closed cleanly)    │
    │ TIMEOUT    │ nothing arrived within the receive timeout   │
    │ ERROR      │ any other socket error (reset, abort, ...)   │
    └────────────┴──────────────────────────────────────────────┘

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

         ACTIVE ◄──────────┐
           │               │ data arrives (counter reset)
           │ timeout       │
           ▼               │
      TIMEOUT_WARN ────────┘
           │
           │ > max_timeouts, overflow, invalid, peer close, error
           ▼
         CLOSED

=============================================================================
"""

import errno
import socket
import time
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    ACTIVE = "active"              # Reading and echoing
    TIMEOUT_WARN = "timeout_warn"  # At least one consecutive receive timeout
    CLOSED = "closed"              # Socket released


class CloseReason(Enum):
    """Why a connection worker finished."""
    GRACEFUL = "graceful"      # Peer closed the connection
    OVERFLOW = "overflow"      # Read filled the whole buffer
    INVALID = "invalid"        # Message failed validation
    TIMEOUT = "timeout"        # Too many consecutive receive timeouts
    ERROR = "error"            # Socket error while reading or writing
    SHUTDOWN = "shutdown"      # Server stopped
    FAULT = "fault"            # Unexpected exception in the handler


class ReadStatus(Enum):
    DATA = "data"
    CLOSED = "closed"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class ReadResult:
    """Outcome of a single receive() call."""
    status: ReadStatus
    data: bytes = b""
    error: Optional[OSError] = None

    @property
    def error_code(self) -> Optional[int]:
        if self.error is None:
            return None
        return self.error.errno


@dataclass
class ConnectionHandle:
    """
    Represents one accepted client connection.

    Owned by exactly one connection worker; nothing else reads from or
    writes to the socket.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short unique identifier used in logs.
        state: Current connection state.
        timeout_count: Consecutive receive timeouts since the last data.
        messages_echoed: Number of messages echoed back.
        bytes_received: Total payload bytes read.
    """

    # Required parameters
    socket: socket.socket
    address: tuple[str, int]

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.ACTIVE
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    timeout_count: int = 0
    messages_echoed: int = 0
    bytes_received: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 4096
    recv_timeout: Optional[float] = 10.0
    drain_timeout: float = 0.2

    last_error: Optional[OSError] = field(default=None, repr=False)

    def __post_init__(self):
        # Blocking socket with a timeout: recv() waits at most recv_timeout
        self.socket.settimeout(self.recv_timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    # =========================================================================
    # READING
    # =========================================================================

    def receive(self) -> ReadResult:
        """
        Read up to buffer_size bytes.

        Returns:
            ReadResult describing what happened. Never raises for socket
            errors; the error is carried in the result.
        """
        try:
            data = self.socket.recv(self.buffer_size)
        except socket.timeout:
            return ReadResult(ReadStatus.TIMEOUT)
        except OSError as e:
            # EAGAIN can surface instead of a timeout on some platforms
            if e.errno in (errno.EAGAIN, errno.EWOULDBLOCK, errno.ETIMEDOUT):
                return ReadResult(ReadStatus.TIMEOUT)
            self.last_error = e
            return ReadResult(ReadStatus.ERROR, error=e)

        if not data:
            return ReadResult(ReadStatus.CLOSED)

        self.bytes_received += len(data)
        self.last_activity = time.time()
        return ReadResult(ReadStatus.DATA, data=data)

    def note_timeout(self) -> int:
        """Record one more consecutive timeout and return the new count."""
        self.timeout_count += 1
        self.state = ConnectionState.TIMEOUT_WARN
        return self.timeout_count

    def reset_timeouts(self):
        self.timeout_count = 0
        self.state = ConnectionState.ACTIVE

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Send all of data to the client.

        Returns:
            True if the data was sent, False if the connection is gone.
        """
        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            self.last_error = e
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection. Safe to call more than once.

        Sends FIN first and drains whatever the client still had in flight,
        so a notice written just before closing is not lost to a reset.
        """
        if self.state == ConnectionState.CLOSED:
            return

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.settimeout(self.drain_timeout)
            deadline = time.time() + self.drain_timeout
            while time.time() < deadline and self.socket.recv(self.buffer_size):
                pass
        except OSError:
            pass  # Includes socket.timeout

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.messages_echoed} messages")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
