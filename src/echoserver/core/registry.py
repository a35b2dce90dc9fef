"""
Thread-safe registry of open connections.

Three kinds of actors touch it concurrently:

    accept loop   ──add()──────►  ┌──────────────────┐
    each pump     ──discard()──►  │ ConnectionRegistry│  ◄──count── sampler
                                  └──────────────────┘

A single lock guards the set and the counters, so every read is a
consistent snapshot.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .connection import Connection


@dataclass(frozen=True)
class MetricsSnapshot:
    """
    Point-in-time view of the listener.

    Attributes:
        open_connections: Accepted and not yet fully closed.
        total_connections: Accepted since the registry was created.
        bytes_echoed: Bytes written back by connections that have closed.
    """
    open_connections: int
    total_connections: int = 0
    bytes_echoed: int = 0

    def to_dict(self) -> dict:
        return {
            "open_connections": self.open_connections,
            "total_connections": self.total_connections,
            "bytes_echoed": self.bytes_echoed,
        }


class ConnectionRegistry:
    """The listener's set of open connections."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()
        # Notified whenever a connection leaves, for wait_until_empty()
        self._changed = threading.Condition(self._lock)
        self._total = 0
        self._bytes_echoed = 0

    def add(self, conn: Connection) -> None:
        """Register a freshly accepted connection."""
        with self._lock:
            self._connections[conn.id] = conn
            self._total += 1

    def discard(self, conn: Connection) -> bool:
        """
        Remove a connection. Returns False if it was not registered.
        """
        with self._changed:
            if self._connections.pop(conn.id, None) is None:
                return False
            self._bytes_echoed += conn.bytes_echoed
            self._changed.notify_all()
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, conn: Connection) -> bool:
        with self._lock:
            return conn.id in self._connections

    def connections(self) -> Tuple[Connection, ...]:
        """Copy of the open connections, safe to iterate."""
        with self._lock:
            return tuple(self._connections.values())

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                open_connections=len(self._connections),
                total_connections=self._total,
                bytes_echoed=self._bytes_echoed,
            )

    def wait_until_empty(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no connection is open.

        Returns:
            True if the registry drained, False on timeout.
        """
        with self._changed:
            return self._changed.wait_for(lambda: not self._connections, timeout)
