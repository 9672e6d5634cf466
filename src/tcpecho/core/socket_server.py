"""
=============================================================================
LISTENING SOCKET
=============================================================================

This module owns the server's listening socket: creation, bind, listen,
polling for pending connections, accept, and release.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create a TCP/IPv4 socket
    2. bind()      Associate it with HOST:PORT
    3. listen()    Let the OS queue incoming connections
    4. select()    Wait (briefly) until a connection is pending
    5. accept()    Take the pending connection; returns a NEW socket
    6. close()     Release the listening socket on shutdown

=============================================================================
WHY POLL INSTEAD OF BLOCKING IN accept()?
=============================================================================

A thread blocked in accept() cannot notice that the server was asked to
stop. Waiting in select() with a short timeout turns the accept loop into:

    while running:
        if wait_for_connection(0.1):   # returns after at most 100 ms
            accept()

so stop() is observed within one poll interval without having to
interrupt a blocking system call.

=============================================================================
"""

import errno
import select
import socket
import logging
from typing import Optional, Tuple

from ..config import ServerConfig


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level TCP listening socket.

    Usage:
        listener = SocketServer(config)
        listener.open()                      # raises OSError on failure
        while running:
            if listener.wait_for_connection(0.1):
                accepted = listener.accept()
        listener.close()
    """

    def __init__(self, config: ServerConfig):
        """
        Args:
            config: Server configuration (host, port, backlog, poll_interval).

        The socket is created lazily in open().
        """
        self.config = config
        self._socket: Optional[socket.socket] = None

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (ip, port); reports the real port when port 0 was asked for."""
        if self._socket is not None:
            return self._socket.getsockname()[:2]
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Avoid "Address already in use" while old connections sit in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # accept() after a successful select() should never block for long,
        # but a client can vanish in between
        sock.settimeout(self.config.poll_interval)
        return sock

    def open(self):
        """
        Create, bind and listen.

        Raises:
            OSError: If the socket cannot be created, bound or put into
                     listening mode. The socket is released first.
        """
        try:
            sock = self._create_socket()
        except OSError as e:
            logger.error(f"Socket creation failed: {e}")
            raise

        try:
            sock.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            sock.close()
            raise

        try:
            sock.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Listen failed on {self.config.host}:{self.config.port}: {e}")
            sock.close()
            raise

        self._socket = sock
        host, port = self.address
        logger.info(f"Listening on {host}:{port}")

    def wait_for_connection(self, timeout: float) -> bool:
        """
        Wait up to timeout seconds for a pending connection.

        Raises:
            OSError: If the listening socket is closed or broken.
        """
        if self._socket is None:
            raise OSError(errno.EBADF, "listening socket is closed")
        readable, _, _ = select.select([self._socket], [], [], timeout)
        return bool(readable)

    def accept(self) -> Optional[Tuple[socket.socket, Tuple[str, int]]]:
        """
        Accept one pending connection.

        Returns:
            (client_socket, client_address), or None if the connection went
            away before it could be accepted or accept() failed.
        """
        if self._socket is None:
            return None
        try:
            client_socket, client_address = self._socket.accept()
        except socket.timeout:
            return None
        except OSError as e:
            logger.error(f"Accept failed: {e}")
            return None

        try:
            # Echo replies are small; send them right away
            client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            logger.debug(f"Could not set TCP_NODELAY: {e}")
        logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")
        return client_socket, client_address

    def close(self):
        """Close the listening socket. Safe to call more than once."""
        if self._socket is None:
            return
        try:
            self._socket.close()
        except OSError:
            pass  # Already closed
        self._socket = None
        logger.info("Listening socket closed")
