"""
=============================================================================
CORE NETWORKING COMPONENTS
=============================================================================

The low-level building blocks of the echo server:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer           Listening socket: bind, listen, poll,      │
    │                          accept, close                              │
    │                                                                      │
    │   ConnectionHandle       One accepted socket plus its per-          │
    │                          connection state (timeouts, counters)      │
    │                                                                      │
    │   ActiveConnectionSet    Count of in-flight connections and the     │
    │   ConnectionWorker       thread serving each one                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

THREAD-PER-CONNECTION MODEL
   Each admitted connection is served by one thread for its whole life.
   The connection cap is enforced when the connection is accepted, not
   by the number of threads available.
"""

from .socket_server import SocketServer
from .connection import (
    ConnectionHandle,
    ConnectionState,
    CloseReason,
    ReadResult,
    ReadStatus,
)
from .workers import ActiveConnectionSet, ConnectionWorker

__all__ = [
    "SocketServer",         # Listening socket
    "ConnectionHandle",     # Wrapper for an accepted client socket
    "ConnectionState",      # ACTIVE / TIMEOUT_WARN / CLOSED
    "CloseReason",          # Why a worker finished
    "ReadResult",           # Outcome of one receive()
    "ReadStatus",
    "ActiveConnectionSet",  # Counted set of connection workers
    "ConnectionWorker",     # One thread per connection
]
