"""
=============================================================================
ECHO CLIENT
=============================================================================

One outbound connection to the echo server, a background thread that
delivers whatever the server sends, and bounded automatic reconnection.

=============================================================================
CLIENT STATE MACHINE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │                   connect_to_server()                                │
    │   DISCONNECTED ─────────────────────────► CONNECTED                 │
    │        ▲  ▲                                   │   │                  │
    │        │  │            disconnect(),          │   │ start_receiving()│
    │        │  └──── send/recv error, server close ┘   ▼                  │
    │        │                                     CONNECTED + RECEIVING   │
    │        │                                                             │
    │        │   attempts exhausted                                        │
    │        └──────────────────── RECONNECTING ◄── send while            │
    │                                   │           disconnected           │
    │                                   │ success                          │
    │                                   ▼                                  │
    │                       CONNECTED (+ RECEIVING if it was before)       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THREADS
=============================================================================

    Caller's thread      connect_to_server(), send_message(), disconnect()
    Receive thread       _receive_loop(): recv → on_message callback

Only the `connected` and `receiving` flags are touched by both threads.
Connecting, reconnecting and closing the socket are serialized by one
lock, and that lock is never held while joining the receive thread, so
disconnect() can be called from the receive thread itself without
deadlocking: it clears the flag and returns instead of joining itself.

The receive thread never starts another receive thread. If it has to
reconnect, it does so inline and keeps looping.

=============================================================================
"""

import errno
import select
import socket
import threading
import time
import logging
from enum import Enum
from typing import Callable, Optional, Union

from .config import ClientConfig


logger = logging.getLogger(__name__)


MessageCallback = Callable[[str], None]


class ClientState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def print_message(message: str):
    """Default receive callback."""
    print(f"Received: {message}", flush=True)


class EchoClient:
    """
    Client for the echo server.

    =========================================================================
    USAGE
    =========================================================================

        client = EchoClient(ClientConfig(port=8080, auto_reconnect=True))
        if not client.connect_to_server():
            sys.exit(1)
        client.start_receiving()         # replies go to on_message
        client.send_message("hello\\n")
        ...
        client.disconnect()

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        on_message: Optional[MessageCallback] = None,
    ):
        self.config = config or ClientConfig()
        self.config.validate()

        self._on_message = on_message or print_message

        self._sock: Optional[socket.socket] = None
        self._connected = False
        self._receiving = False
        self._reconnecting = False
        self._auto_reconnect = self.config.auto_reconnect

        # Receiving was active when the connection was lost; a successful
        # reconnect turns it back on
        self._resume_receiving = False

        self._receive_thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()

        self.last_error: Optional[OSError] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> ClientState:
        if self._reconnecting:
            return ClientState.RECONNECTING
        if self._connected:
            return ClientState.CONNECTED
        return ClientState.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_receiving(self) -> bool:
        return self._receiving

    @property
    def auto_reconnect(self) -> bool:
        return self._auto_reconnect

    @auto_reconnect.setter
    def auto_reconnect(self, enabled: bool):
        self._auto_reconnect = enabled

    # =========================================================================
    # CONNECT / DISCONNECT
    # =========================================================================

    def connect_to_server(self) -> bool:
        """
        Open the connection.

        Returns:
            True if connected (including when already connected). On
            failure the OS error is logged and kept in last_error.
        """
        with self._lock:
            if self._connected:
                return True

            try:
                sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            except OSError as e:
                logger.error(f"Socket creation failed: {e}")
                self.last_error = e
                return False

            # Applies to both send and receive
            sock.settimeout(self.config.timeout)

            try:
                sock.connect((self.config.host, self.config.port))
            except OSError as e:
                logger.error(f"Connection to {self.config.host}:{self.config.port} failed: {e}")
                sock.close()
                self.last_error = e
                return False

            self._sock = sock
            self._connected = True
            logger.info(f"Connected to {self.config.host}:{self.config.port}")
            return True

    def disconnect(self):
        """
        Stop receiving, close the socket and mark the client disconnected.

        No-op when already disconnected. Safe to call from the receive
        callback or the receive thread.
        """
        if not self._connected:
            return

        if self._receiving:
            self._resume_receiving = True
        self._halt_receiving()

        with self._lock:
            if not self._connected:
                return
            self._close_socket()
            self._connected = False

        logger.info(f"Disconnected from {self.config.host}:{self.config.port}")

    def _close_socket(self):
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError:
            pass
        self._sock = None

    # =========================================================================
    # RECONNECT
    # =========================================================================

    def try_reconnect(self) -> bool:
        """
        Re-establish the connection with bounded retries.

        ┌─────────────────────────────────────────────────────────────────┐
        │   auto_reconnect off?  → False, no attempts                     │
        │                                                                  │
        │   for attempt in 1..max_reconnect_attempts:                     │
        │       sleep(reconnect_delay)                                    │
        │       close stale socket                                        │
        │       connect_to_server()  → success: resume receiving, True    │
        │                                                                  │
        │   → False, still DISCONNECTED                                   │
        └─────────────────────────────────────────────────────────────────┘

        Callers on other threads block until this finishes.
        """
        if not self._auto_reconnect:
            return False

        with self._lock:
            if self._connected:
                return True

            self._reconnecting = True
            try:
                reconnected = False
                attempts = self.config.max_reconnect_attempts
                for attempt in range(1, attempts + 1):
                    logger.warning(f"Reconnecting (attempt {attempt}/{attempts})...")
                    time.sleep(self.config.reconnect_delay)
                    self._close_socket()
                    if self.connect_to_server():
                        reconnected = True
                        break
            finally:
                self._reconnecting = False

        if not reconnected:
            logger.error(f"Reconnection failed after {attempts} attempts")
            return False

        logger.info("Reconnected successfully")
        if self._resume_receiving:
            self.start_receiving()
        return True

    # =========================================================================
    # SENDING
    # =========================================================================

    def send_message(self, message: Union[str, bytes]) -> bool:
        """
        Send one message to the server.

        Reconnects first if disconnected. An empty message is not an error:
        nothing is sent and True is returned. A partial write is logged as
        a warning and the rest is not resent.

        Returns:
            False if there is no connection or the send failed hard (the
            client is then disconnected).
        """
        if not self._connected and not self.try_reconnect():
            logger.error("Cannot send - not connected to server")
            return False

        if isinstance(message, str):
            payload = message.encode(self.config.encoding)
        else:
            payload = message

        if not payload:
            logger.warning("Attempt to send empty message")
            return True

        sock = self._sock
        if sock is None:
            logger.error("Cannot send - not connected to server")
            return False

        try:
            sent = sock.send(payload)
        except OSError as e:
            logger.error(f"Send failed: {e}")
            self.last_error = e
            self.disconnect()
            return False

        if sent != len(payload):
            logger.warning(f"Partial message sent ({sent}/{len(payload)} bytes)")
        return True

    # =========================================================================
    # RECEIVING
    # =========================================================================

    def start_receiving(self):
        """Start the receive thread. No-op if disconnected or already receiving."""
        if not self._connected or self._receiving:
            return

        previous = self._receive_thread
        if previous is not None and previous is not threading.current_thread():
            previous.join()

        self._resume_receiving = True
        self._receive_thread = threading.Thread(
            target=self._receive_loop,
            name="echo-client-receiver",
            daemon=True,
        )
        self._receiving = True
        self._receive_thread.start()

    def stop_receiving(self):
        """
        Stop the receive thread and wait for it to exit.

        Once this returns, the callback will not be called again. Receiving
        stays off after a later reconnect.
        """
        self._resume_receiving = False
        self._halt_receiving()

    def _halt_receiving(self):
        self._receiving = False
        thread = self._receive_thread
        if thread is None or thread is threading.current_thread():
            # Called from the receive loop: it exits when this call returns
            return
        thread.join()
        self._receive_thread = None

    def _receive_loop(self):
        """
        Receive thread body.

            while receiving:
                disconnected? → try_reconnect(), stop if that fails
                wait up to poll_interval for data (nothing → loop)
                recv()
                    data      → on_message
                    b""       → server closed: disconnect, stop
                    timeout   → loop
                    error     → disconnect, stop
        """
        max_chunk = self.config.buffer_size - 1
        try:
            while self._receiving:
                if not self._connected:
                    if not self.try_reconnect():
                        break
                    continue

                sock = self._sock
                if sock is None:
                    continue

                try:
                    readable, _, _ = select.select([sock], [], [], self.config.poll_interval)
                except (OSError, ValueError):
                    # Socket closed underneath us; re-check the flags
                    continue
                if not readable:
                    continue

                try:
                    data = sock.recv(max_chunk)
                except socket.timeout:
                    continue
                except OSError as e:
                    if e.errno in (errno.EAGAIN, errno.EWOULDBLOCK, errno.ETIMEDOUT):
                        continue
                    logger.error(f"Receive error: {e}")
                    self.last_error = e
                    self.disconnect()
                    break

                if not data:
                    logger.info("Server disconnected")
                    self.disconnect()
                    break

                self._deliver(data[:max_chunk])
        finally:
            if self._receive_thread is threading.current_thread():
                self._receiving = False

    def _deliver(self, data: bytes):
        message = data.decode(self.config.encoding, errors="replace")
        try:
            self._on_message(message)
        except Exception as e:
            logger.exception(f"Message callback failed: {e}")

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def close(self):
        """
        Shut the client down for good: stop receiving, then disconnect.

        Unlike disconnect(), this also stops a receive thread that is in
        the middle of reconnecting.
        """
        self.stop_receiving()
        self.disconnect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
