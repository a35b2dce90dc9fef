"""
=============================================================================
CONNECTION
=============================================================================

This module wraps one accepted client socket: its address, its lifecycle
state and the three socket operations an echo needs (read a chunk, write
a chunk, close).

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Client sends:
        send("Hello")
        send("World")

    Server might receive ANY of these:
        recv() → "HelloWorld"      (both combined)
        recv() → "Hel"             (partial)
        recv() → "loWorld"         (rest of first + second)

For an echo server this is good news: we never need to find message
boundaries. Whatever recv() hands us goes straight back out with
sendall(), in the same order. Chunking on the way back may differ from
chunking on the way in, and the client must not care.

=============================================================================
HALF-CLOSE
=============================================================================

TCP connections have two independent directions. A client can say "I'm
done sending" (FIN) while still reading:

    Client                              Server
       │   "hello" ──────────────────►    │
       │   FIN (shutdown SHUT_WR) ────►   │  recv() → b"" (EOF)
       │                                  │
       │ ◄──────────────────── "hello"    │  (already sent, see pump)
       │ ◄──────────────────────── FIN    │  shutdown(SHUT_WR)
       │                                  │  close()

Because the pump writes every chunk back BEFORE it reads the next one,
everything is already echoed by the time EOF is seen. We only need to
send our own FIN and release the socket.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    OPEN ──── read EOF ────► HALF_CLOSED ──── FIN sent, fd released ───┐
     │                                                                  ▼
     └──────────── I/O error (either direction) ─────────────────► CLOSED

CLOSED is terminal.

=============================================================================
"""

import socket
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field

from ..errors import ConnectionIOError


class ConnectionState(Enum):
    """
    Connection lifecycle states.
    """
    OPEN = "open"                # Relaying bytes in both directions
    HALF_CLOSED = "half_closed"  # Peer sent EOF, our FIN pending
    CLOSED = "closed"            # Socket released


@dataclass
class Connection:
    """
    Represents one accepted duplex byte stream.

    Attributes:
        socket: The client socket.
        address: Peer address as returned by accept().
        id: Short unique identifier (for logging).
        state: Current connection state.
        created_at: Timestamp when the connection was accepted.
        bytes_echoed: Bytes written back so far.
        buffer_size: Most bytes read per recv().
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.OPEN
    created_at: float = field(default_factory=time.time)
    bytes_echoed: int = 0

    buffer_size: int = 8192

    def __post_init__(self):
        """
        Configure the socket for echoing.

        Blocking with no timeout: an idle peer parks the pump thread in
        recv() until data or EOF arrives. There is no idle timeout.
        """
        self.socket.settimeout(None)

        # Echo each chunk as soon as we have it instead of letting
        # Nagle's algorithm hold small writes back.
        if self.socket.family in (socket.AF_INET, socket.AF_INET6):
            try:
                self.socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                pass

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def remote_address(self) -> str:
        """Peer address formatted as host:port."""
        if isinstance(self.address, tuple) and len(self.address) >= 2:
            host, port = self.address[0], self.address[1]
            if ":" in str(host):
                return f"[{host}]:{port}"
            return f"{host}:{port}"
        return str(self.address) if self.address else "<unknown>"

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def age(self) -> float:
        """Get connection age in seconds."""
        return time.time() - self.created_at

    # =========================================================================
    # I/O
    # =========================================================================

    def recv(self) -> bytes:
        """
        Read whatever bytes are available, up to buffer_size.

        Blocks while the peer is idle.

        Returns:
            The bytes read, or b"" once the peer has closed its write side.

        Raises:
            ConnectionIOError: If the read fails (reset, closed socket...).
        """
        try:
            return self.socket.recv(self.buffer_size)
        except OSError as e:
            raise ConnectionIOError(self.id, f"Read failed: {e}", e) from e

    def send(self, data: bytes) -> None:
        """
        Write all of data back to the peer.

        sendall() only returns once every byte is in the kernel's send
        buffer. When the peer stops reading, that buffer fills up and
        sendall() blocks, which is exactly the backpressure we want.

        Raises:
            ConnectionIOError: If the write fails (reset, broken pipe...).
        """
        try:
            self.socket.sendall(data)
        except OSError as e:
            raise ConnectionIOError(self.id, f"Write failed: {e}", e) from e
        self.bytes_echoed += len(data)

    # =========================================================================
    # CLOSING
    # =========================================================================

    def half_close(self) -> None:
        """
        Peer reached EOF: send our own FIN.

        Raises:
            ConnectionIOError: If the shutdown fails.
        """
        if self.state != ConnectionState.OPEN:
            return

        self.state = ConnectionState.HALF_CLOSED
        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError as e:
            raise ConnectionIOError(self.id, f"Shutdown failed: {e}", e) from e

    def close(self) -> None:
        """Release the socket. Safe to call more than once."""
        if self.state == ConnectionState.CLOSED:
            return

        try:
            self.socket.close()
        except OSError:
            pass  # Already gone

        self.state = ConnectionState.CLOSED

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure connection is closed."""
        self.close()
        return False  # Don't suppress exceptions
