"""
=============================================================================
SESSION LOGGING
=============================================================================

One log record per connection, written when the connection closes.

    127.0.0.1:52144 [18/Oct/2026:10:15:02 +0000] conn=3f2a9c1e reason=graceful messages=4 bytes=37 1523.40ms
    127.0.0.1:52150 [18/Oct/2026:10:15:09 +0000] conn=b71d0e55 reason=error (socket error: 104) messages=0 bytes=0 2.11ms

Records go to the "tcpecho.sessions" logger so they can be routed on their
own:

    logging.getLogger("tcpecho.sessions").addHandler(file_handler)

=============================================================================
"""

import json
import time
import logging
from dataclasses import dataclass
from typing import Optional

from .core.connection import ConnectionHandle, CloseReason


logger = logging.getLogger("tcpecho.sessions")


# Normal endings are INFO; anything the client did wrong or that went
# wrong on the wire is WARNING
_QUIET_REASONS = {CloseReason.GRACEFUL, CloseReason.SHUTDOWN}


@dataclass
class SessionLog:
    """
    Structured log entry for one finished connection.

    connection_id:    Short id shared with the server's other log lines
    client_ip:        Peer address
    client_port:      Peer port
    reason:           CloseReason value
    detail:           Extra context (socket error code, ...)
    messages_echoed:  Messages echoed back before the close
    bytes_received:   Payload bytes read
    duration_ms:      Time from accept to close
    timestamp:        When the connection closed
    """
    connection_id: str
    client_ip: str
    client_port: int
    reason: str
    detail: str
    messages_echoed: int
    bytes_received: int
    duration_ms: float
    timestamp: str

    @classmethod
    def from_connection(
        cls,
        conn: ConnectionHandle,
        reason: CloseReason,
        detail: str = "",
        duration: Optional[float] = None,
    ) -> "SessionLog":
        if duration is None:
            duration = conn.age
        return cls(
            connection_id=conn.id,
            client_ip=conn.client_ip,
            client_port=conn.client_port,
            reason=reason.value,
            detail=detail,
            messages_echoed=conn.messages_echoed,
            bytes_received=conn.bytes_received,
            duration_ms=duration * 1000,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "client_ip": self.client_ip,
            "client_port": self.client_port,
            "reason": self.reason,
            "detail": self.detail,
            "messages_echoed": self.messages_echoed,
            "bytes_received": self.bytes_received,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        reason = f"{self.reason} ({self.detail})" if self.detail else self.reason
        return (
            f"{self.client_ip}:{self.client_port} [{self.timestamp}] "
            f"conn={self.connection_id} reason={reason} "
            f"messages={self.messages_echoed} bytes={self.bytes_received} "
            f"{self.duration_ms:.2f}ms"
        )


class SessionLogger:
    """
    Emits a SessionLog for every closed connection.

    Args:
        log_format: "text" (one human-readable line) or "json".
    """

    def __init__(self, log_format: str = "text"):
        self.log_format = log_format

    def record(
        self,
        conn: ConnectionHandle,
        reason: CloseReason,
        detail: str = "",
        duration: Optional[float] = None,
    ) -> SessionLog:
        entry = SessionLog.from_connection(conn, reason, detail, duration)
        level = logging.INFO if reason in _QUIET_REASONS else logging.WARNING

        if self.log_format == "json":
            logger.log(level, json.dumps(entry.to_dict()))
        else:
            logger.log(level, entry.to_text())
        return entry
