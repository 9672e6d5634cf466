"""
=============================================================================
ECHO SERVER
=============================================================================

The orchestrator that ties the listening socket, admission control and
per-connection workers together.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ECHO SERVER ARCHITECTURE                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   EchoServer    │                          │
    │                        │ (accept thread) │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────────┐  ┌──────────────┐       │
    │    │ SocketServer │    │ActiveConnection- │  │InputValidator│       │
    │    │ (listening)  │    │Set (count+workers│  │              │       │
    │    └──────────────┘    └────────┬─────────┘  └──────────────┘       │
    │                                 │                                    │
    │                   ┌─────────────┼─────────────┐                     │
    │                   ▼             ▼             ▼                     │
    │             ConnectionWorker  Worker  ...  Worker   (1 per client)  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONNECTION LIFECYCLE
=============================================================================

    1. PENDING CONNECTION
       └── select() on the listening socket reports it
    2. ADMISSION CHECK
       └── active >= max_clients? accept, send busy notice, close
    3. ADMIT
       └── accept, apply receive timeout, count it, start a worker
    4. WORKER LOOP
       └── recv → validate → echo, until close
    5. CLEANUP (every exit path)
       └── socket closed, active count decremented, session logged

=============================================================================
WORKER LOOP
=============================================================================

    ┌──────────────────────┬────────────────────────────────────────────┐
    │ read fills buffer    │ "Error: Message too large", close          │
    │ invalid message      │ "Error: Invalid message format", close     │
    │ valid message        │ echo exact bytes, keep reading             │
    │ peer closed          │ close (graceful)                           │
    │ timeout              │ count it; > max_timeouts → close           │
    │ other socket error   │ close                                      │
    │ server stopping      │ close at the next loop boundary            │
    └──────────────────────┴────────────────────────────────────────────┘

Shutdown is cooperative: stop() clears the running flag and waits for
every worker. A worker blocked in recv() only notices at its next timeout,
so stop() can take up to one receive timeout.

=============================================================================
"""

import threading
import logging
from collections import Counter
from typing import Optional, Tuple

from .config import ServerConfig
from .core import (
    SocketServer,
    ConnectionHandle,
    CloseReason,
    ReadStatus,
    ActiveConnectionSet,
    ConnectionWorker,
)
from .session_log import SessionLogger
from .validation import InputValidator


logger = logging.getLogger(__name__)


BUSY_NOTICE = b"Server is busy. Try again later.\n"
INVALID_NOTICE = b"Error: Invalid message format\n"
OVERSIZE_NOTICE = b"Error: Message too large\n"


class EchoServer:
    """
    Bounded-concurrency TCP echo server.

    =========================================================================
    USAGE
    =========================================================================

        server = EchoServer(ServerConfig(port=8080))
        if not server.start():       # non-blocking; accept loop runs
            sys.exit(1)              # in a background thread
        ...
        server.stop()                # waits for every connection worker

    Or, blocking until a cancellation token is set:

        cancel = threading.Event()
        server.serve(cancel)         # returns after cancel.set()

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        validator: Optional[InputValidator] = None,
        session_logger: Optional[SessionLogger] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self._listener = SocketServer(self.config)
        self._validator = validator or InputValidator(self.config.max_message_length)
        self._session_logger = session_logger or SessionLogger(self.config.log_format)

        self._connections = ActiveConnectionSet(
            capacity=self.config.max_clients,
            on_close=self._on_connection_closed,
        )

        self._running = False
        self._state_lock = threading.Lock()
        self._accept_thread: Optional[threading.Thread] = None

        self._stats_lock = threading.Lock()
        self._accepted = 0
        self._rejected = 0
        self._messages_echoed = 0
        self._closed: Counter = Counter()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_clients(self) -> int:
        """Number of connections currently being served."""
        return self._connections.count

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (ip, port). With port 0 in the config this is the real port."""
        return self._listener.address

    @property
    def stats(self) -> dict:
        """
        Server statistics.

        Returns a dict with the active count, totals of accepted and
        rejected connections, messages echoed, and closed connections per
        close reason.
        """
        with self._stats_lock:
            return {
                "active": self.active_clients,
                "accepted": self._accepted,
                "rejected": self._rejected,
                "messages_echoed": self._messages_echoed,
                "closed": dict(self._closed),
            }

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> bool:
        """
        Bind, listen and start the accept loop in a background thread.

        Returns:
            True if the server is running (including when it already was),
            False if the socket could not be created, bound or listened on.
        """
        with self._state_lock:
            if self._running:
                return True

            try:
                self._listener.open()
            except OSError:
                return False

            self._running = True
            self._accept_thread = threading.Thread(
                target=self._accept_loop,
                name="echo-accept",
                daemon=True,
            )
            self._accept_thread.start()

        host, port = self.address
        logger.info(f"Echo server started on {host}:{port} (max {self.config.max_clients} clients)")
        return True

    def stop(self):
        """
        Stop the server.

        1. Clear the running flag (accept loop exits within one poll interval)
        2. Wait for the accept loop
        3. Wait for every connection worker, without a timeout
        4. Release the listening socket

        Safe to call more than once.
        """
        with self._state_lock:
            if self._accept_thread is None:
                return
            logger.info("Stopping echo server...")
            self._running = False
            accept_thread = self._accept_thread
            self._accept_thread = None

        if accept_thread is not threading.current_thread():
            accept_thread.join()

        drained = self._connections.drain()
        self._listener.close()
        logger.info(f"Echo server stopped ({drained} connection workers joined)")

    def serve(self, cancel: threading.Event) -> bool:
        """
        Run until the cancellation token is set, then stop.

        Args:
            cancel: Set by the owner (e.g. a signal handler) to request
                    shutdown.

        Returns:
            False if the server could not start, True after a clean stop.
        """
        if not self.start():
            return False
        try:
            # Short waits keep the main thread responsive to signals
            while self._running and not cancel.wait(self.config.poll_interval):
                pass
        finally:
            self.stop()
        return True

    def __enter__(self):
        if not self.start():
            raise OSError(f"Could not start echo server on {self.config.host}:{self.config.port}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def _accept_loop(self):
        """
        Poll for connections until the running flag is cleared.

            while running:
                pending? ── no ──────────────────────────┐
                   │                                     │
                   yes                                   │
                   │                                     │
                at capacity? ── yes ── busy notice ──────┤
                   │                                     │
                   no ── admit, start worker ────────────┤
                                                         ▼
                                                 reap finished workers
        """
        while self._running:
            try:
                pending = self._listener.wait_for_connection(self.config.poll_interval)
            except (OSError, ValueError) as e:
                # Listening socket is gone; nothing more can be accepted
                if self._running:
                    logger.error(f"Accept loop failed: {e}")
                    self._running = False
                break

            if pending:
                if self._connections.count >= self.config.max_clients:
                    self._reject()
                else:
                    self._admit()

            self._connections.reap()

    def _reject(self):
        """Accept a connection only to tell it the server is full."""
        accepted = self._listener.accept()
        if accepted is None:
            return
        client_socket, client_address = accepted

        logger.warning(
            f"Client {client_address[0]}:{client_address[1]} rejected: server is full "
            f"({self.config.max_clients} clients)"
        )
        # Drain unread input before closing so the notice is not lost to a reset
        with ConnectionHandle(
            socket=client_socket,
            address=client_address,
            buffer_size=self.config.buffer_size,
            recv_timeout=self.config.poll_interval,
        ) as conn:
            conn.send(BUSY_NOTICE)

        with self._stats_lock:
            self._rejected += 1

    def _admit(self):
        accepted = self._listener.accept()
        if accepted is None:
            return
        client_socket, client_address = accepted

        conn = ConnectionHandle(
            socket=client_socket,
            address=client_address,
            buffer_size=self.config.buffer_size,
            recv_timeout=self.config.recv_timeout,
        )

        try:
            self._connections.spawn(conn, self._handle_client)
        except RuntimeError as e:
            logger.error(f"[{conn.id}] Could not start connection worker: {e}")
            conn.close()
            return

        with self._stats_lock:
            self._accepted += 1

    # =========================================================================
    # CONNECTION WORKER
    # =========================================================================

    def _handle_client(self, conn: ConnectionHandle) -> CloseReason:
        """
        Serve one connection until it has to close (runs in its worker thread).

        Returns:
            Why the connection is closing. The worker closes the socket and
            releases the connection slot afterwards.
        """
        logger.info(f"[{conn.id}] New client connected from {conn.client_ip}:{conn.client_port}")

        while self._running:
            result = conn.receive()

            if result.status is ReadStatus.DATA:
                conn.reset_timeouts()

                # No framing: a full buffer may be the front of something larger
                if len(result.data) >= self.config.buffer_size:
                    conn.send(OVERSIZE_NOTICE)
                    return CloseReason.OVERFLOW

                if not self._validator.validate(result.data):
                    conn.send(INVALID_NOTICE)
                    return CloseReason.INVALID

                logger.debug(f"[{conn.id}] Echo {len(result.data)} bytes: {result.data!r}")
                if not conn.send(result.data):
                    return CloseReason.ERROR

                conn.messages_echoed += 1
                with self._stats_lock:
                    self._messages_echoed += 1

            elif result.status is ReadStatus.CLOSED:
                return CloseReason.GRACEFUL

            elif result.status is ReadStatus.TIMEOUT:
                count = conn.note_timeout()
                if count > self.config.max_timeouts:
                    return CloseReason.TIMEOUT
                logger.debug(f"[{conn.id}] Receive timeout {count}/{self.config.max_timeouts}")

            else:
                return CloseReason.ERROR

        return CloseReason.SHUTDOWN

    def _on_connection_closed(self, worker: ConnectionWorker):
        """Close callback from the connection set (runs in the worker thread)."""
        conn = worker.conn
        reason = worker.reason or CloseReason.FAULT

        detail = ""
        if reason is CloseReason.ERROR and conn.last_error is not None:
            detail = f"socket error: {conn.last_error.errno}"

        with self._stats_lock:
            self._closed[reason.value] += 1

        self._session_logger.record(conn, reason, detail, duration=worker.duration)
