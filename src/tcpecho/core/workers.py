"""
=============================================================================
CONNECTION WORKERS AND THE ACTIVE CONNECTION SET
=============================================================================

One thread serves one connection. The ActiveConnectionSet keeps the count
of in-flight connections and the worker threads that serve them.

=============================================================================
WHY NOT A FIXED-SIZE POOL?
=============================================================================

An echo connection is long-lived: a worker sits in recv() for as long as
the client stays connected. A pool of N threads with a queue in front
would leave queued clients connected but unanswered. Instead the cap is
enforced at accept time (the accept loop refuses connection N+1 with a
busy notice), and every admitted connection gets its own thread.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     ActiveConnectionSet                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   spawn(conn)    count += 1, start ConnectionWorker    (under lock) │
    │                                                                      │
    │   worker exits   conn.close(), count -= 1              (under lock) │
    │                  on_close(worker)                                    │
    │                                                                      │
    │   reap()         forget workers whose thread has ended (under lock) │
    │                                                                      │
    │   drain()        join every remaining worker, no timeout            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

INVARIANT: count == number of workers whose handler has not yet finished,
0 <= count <= capacity.

=============================================================================
"""

import threading
import time
import logging
from typing import Callable, Optional

from .connection import ConnectionHandle, CloseReason


logger = logging.getLogger(__name__)


ConnectionHandler = Callable[[ConnectionHandle], CloseReason]


class ConnectionWorker(threading.Thread):
    """
    Thread that serves one connection from accept to close.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Worker Lifecycle                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. handler(conn) → CloseReason                                    │
    │          │                                                           │
    │          └── Unexpected exception: logged, reason = FAULT           │
    │                                                                      │
    │   2. conn.close()          (always)                                 │
    │                                                                      │
    │   3. on_exit(self)         (always, exactly once)                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        conn: ConnectionHandle,
        handler: ConnectionHandler,
        on_exit: Callable[["ConnectionWorker"], None],
    ):
        # daemon=True: a stuck client cannot keep the process alive
        super().__init__(name=f"echo-conn-{conn.id}", daemon=True)
        self.conn = conn
        self._handler = handler
        self._on_exit = on_exit

        self.reason: Optional[CloseReason] = None
        self.started_at = 0.0
        self.finished_at = 0.0

    @property
    def duration(self) -> float:
        """Seconds the worker ran (so far, if still running)."""
        end = self.finished_at or time.time()
        return end - self.started_at if self.started_at else 0.0

    def run(self):
        self.started_at = time.time()
        reason = CloseReason.FAULT
        try:
            reason = self._handler(self.conn)
        except Exception as e:
            # One broken connection must not take the server down
            logger.exception(f"[{self.conn.id}] Exception in connection handler: {e}")
        finally:
            self.reason = reason
            try:
                self.conn.close()
            finally:
                self.finished_at = time.time()
                self._on_exit(self)


class ActiveConnectionSet:
    """
    Count of in-flight connections plus the workers serving them.

    Shared by the accept loop (spawn, reap, drain) and every worker
    (release on exit). All mutation happens under one lock.

    Usage:
        connections = ActiveConnectionSet(capacity=100, on_close=log_close)
        if connections.is_full:
            reject(sock)
        else:
            connections.spawn(conn, handle_client)
        connections.reap()
        ...
        connections.drain()      # on shutdown
    """

    def __init__(
        self,
        capacity: int,
        on_close: Optional[Callable[[ConnectionWorker], None]] = None,
    ):
        self.capacity = capacity
        self._on_close = on_close

        self._lock = threading.Lock()
        self._count = 0
        self._workers: dict[str, ConnectionWorker] = {}

    @property
    def count(self) -> int:
        """Number of connections currently being served."""
        with self._lock:
            return self._count

    @property
    def is_full(self) -> bool:
        return self.count >= self.capacity

    @property
    def connection_ids(self) -> list[str]:
        """Ids of workers not yet reaped."""
        with self._lock:
            return list(self._workers)

    def __len__(self) -> int:
        return self.count

    def spawn(self, conn: ConnectionHandle, handler: ConnectionHandler) -> ConnectionWorker:
        """
        Count the connection and start a worker for it.

        Raises:
            RuntimeError: If the set is at capacity or the thread cannot
                          be started. The count is left unchanged.
        """
        worker = ConnectionWorker(conn, handler, self._finish)
        with self._lock:
            if self._count >= self.capacity:
                raise RuntimeError("Connection capacity reached")
            self._count += 1
            self._workers[conn.id] = worker

        try:
            worker.start()
        except RuntimeError:
            with self._lock:
                self._count -= 1
                self._workers.pop(conn.id, None)
            raise

        logger.debug(f"[{conn.id}] Worker started ({self.count}/{self.capacity} active)")
        return worker

    def _finish(self, worker: ConnectionWorker):
        """Called from the worker thread as its last action."""
        with self._lock:
            self._count -= 1

        if self._on_close is not None:
            try:
                self._on_close(worker)
            except Exception as e:
                logger.exception(f"[{worker.conn.id}] Close callback failed: {e}")

    def reap(self) -> int:
        """
        Forget workers whose thread has finished.

        Returns:
            Number of workers removed.
        """
        with self._lock:
            finished = [cid for cid, w in self._workers.items() if not w.is_alive()]
            for cid in finished:
                del self._workers[cid]
        return len(finished)

    def drain(self) -> int:
        """
        Wait for every outstanding worker to finish (no timeout).

        Only call once nothing else is spawning workers.

        Returns:
            Number of workers joined.
        """
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()

        for worker in workers:
            if worker is not threading.current_thread():
                worker.join()

        return len(workers)

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "active": self._count,
                "capacity": self.capacity,
                "tracked_workers": len(self._workers),
            }
