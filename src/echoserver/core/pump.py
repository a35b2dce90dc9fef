"""
=============================================================================
CONNECTION PUMP
=============================================================================

One pump per accepted connection, each in its own thread. The pump is the
whole echo:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Pump Loop                                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   while True:                                                        │
    │       │                                                              │
    │       ├──► recv()            BLOCKS until bytes or EOF               │
    │       │       │                                                      │
    │       │       └── b"" → half_close() → done                         │
    │       │                                                              │
    │       └──► sendall(chunk)    BLOCKS until chunk is handed to kernel │
    │                                                                      │
    │   finally:                                                           │
    │       close()                Release the socket                      │
    │       on_close(conn)         Tell the listener (registry removal)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
BACKPRESSURE
=============================================================================

Read and write alternate in a single thread, so at most ONE chunk
(buffer_size bytes) is ever held per connection. A slow reader on the
other end fills the kernel send buffer, sendall() blocks, and we stop
calling recv(). The peer's own send buffer then fills up and TCP flow
control pushes the slowdown all the way back to the sender.

=============================================================================
"""

import logging
import threading
from typing import Callable, Optional

from ..errors import ConnectionIOError
from .connection import Connection


logger = logging.getLogger(__name__)


class ConnectionPump(threading.Thread):
    """
    Thread that echoes one connection until EOF or an I/O error.

    Connection-scoped errors never escape run(): they end this pump and
    nothing else.

    Usage:
        pump = ConnectionPump(conn, on_close=registry.discard)
        pump.start()   # Returns immediately
    """

    def __init__(
        self,
        connection: Connection,
        on_close: Optional[Callable[[Connection], None]] = None,
    ):
        """
        Args:
            connection: The accepted connection to serve.
            on_close: Called exactly once, after the socket is released.
        """
        # daemon=True: an idle peer must not keep the process alive
        # after the listener is gone.
        super().__init__(name=f"Pump-{connection.id}", daemon=True)

        self.connection = connection
        self.on_close = on_close
        self.error: Optional[ConnectionIOError] = None

    def run(self):
        """Pump until done, then always close and report."""
        conn = self.connection
        try:
            self.pump()
        finally:
            conn.close()
            # One debug line per connection: the error, or this summary
            if self.error is None:
                logger.debug(
                    f"[{conn.id}] Connection closed after {conn.age:.3f}s, "
                    f"{conn.bytes_echoed} bytes echoed"
                )
            if self.on_close is not None:
                try:
                    self.on_close(self.connection)
                except Exception as e:
                    logger.exception(f"[{conn.id}] Close callback failed: {e}")

    def pump(self):
        """
        Relay bytes from the connection back into it.

        Runs in the calling thread; run() is the threaded entry point.
        """
        conn = self.connection

        try:
            while True:
                chunk = conn.recv()
                if not chunk:
                    # Peer closed its write side. Everything it sent has
                    # already been written back.
                    conn.half_close()
                    return
                conn.send(chunk)

        except ConnectionIOError as e:
            # Unflushed data is dropped, no retry.
            self.error = e
            logger.debug(f"Connection error: {e}")
