"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

This module owns the listening socket: bind, listen, accept, close. It
knows nothing about echoing. Each accepted client socket is handed to a
callback, and what happens next is the caller's business.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. getaddrinfo()  Resolve host:port → address family + sockaddr
    2. socket()       Create the listening socket
    3. bind()         Reserve host:port         ──► BindError on failure
    4. listen()       OS starts queueing connections (backlog)
    5. accept()       Loop: one NEW socket per client
    6. close()        Release the port

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR (POSIX only):
──────────────────────────
Lets a restarted server bind immediately instead of waiting out
TIME_WAIT. On Linux/BSD it does NOT let two live listeners share a port,
so a second server on the same host:port still gets "Address already in
use". On Windows it would, so it is not set there.

SO_REUSEPORT:
─────────────
Deliberately NOT set. It would let a second listener silently share the
port, and we want that to be a BindError.

=============================================================================
ACCEPT ERRORS
=============================================================================

    ┌─────────────────────────┬─────────────────────────────────────────┐
    │ accept() outcome        │ What we do                              │
    ├─────────────────────────┼─────────────────────────────────────────┤
    │ timeout                 │ Normal - re-check running flag          │
    │ ECONNABORTED, EPROTO... │ Transient - log WARNING, keep going     │
    │ EMFILE, ENFILE, ENOMEM  │ Transient - log ERROR, back off once    │
    │ anything else (EBADF..) │ Fatal - ListenerError to the caller     │
    │ any error after         │ Expected - we closed the socket         │
    │   shutdown()            │                                         │
    └─────────────────────────┴─────────────────────────────────────────┘

=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (2):   Sent when user presses Ctrl+C
SIGTERM (15): Sent by docker stop, systemd stop, kill command

Python only allows installing handlers from the main thread, so servers
running in a background thread (tests, embedding) skip this step.

A handler runs on the main thread between two bytecodes, possibly inside
a block that already holds the server lock, so that lock is reentrant.

=============================================================================
"""

import errno
import os
import socket
import signal
import logging
import threading
from typing import Optional, Callable, Tuple

from ..errors import AcceptError, BindError, ListenerError


logger = logging.getLogger(__name__)


# accept() failures that concern one incoming connection, not the listener
TRANSIENT_ACCEPT_ERRNOS = frozenset(
    code for code in (
        getattr(errno, name, None)
        for name in (
            "ECONNABORTED", "ECONNRESET", "EPROTO", "EPERM", "ETIMEDOUT",
            "EHOSTUNREACH", "ENETUNREACH", "ENETDOWN", "EAGAIN", "EWOULDBLOCK",
            "ENOPROTOOPT", "EOPNOTSUPP",
        )
    )
    if code is not None
)

# Out of descriptors or memory: accept() may work again once a
# connection closes, so back off instead of giving up.
RESOURCE_ACCEPT_ERRNOS = frozenset(
    code for code in (
        getattr(errno, name, None)
        for name in ("EMFILE", "ENFILE", "ENOBUFS", "ENOMEM")
    )
    if code is not None
)


ConnectionCallback = Callable[[socket.socket, Tuple], None]


class SocketServer:
    """
    Low-level TCP socket server.

    Manages socket lifecycle and connection acceptance.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    bind()            Create socket, bind, listen                     │
    │        │             (raises BindError, nothing left open)           │
    │        ▼                                                             │
    │    serve_forever()   Accept loop (blocks here!)                      │
    │        │                                                             │
    │        └──► while running:                                           │
    │                accept()          Wait for connection                 │
    │                callback(sock, addr)   Hand off to EchoServer         │
    │                                                                      │
    │    shutdown()        Stop the loop; socket closed within one         │
    │                      poll interval                                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        def on_connection(sock, address):
            ...

        server = SocketServer("127.0.0.1", 7007)
        server.bind()
        server.serve_forever(on_connection)  # Blocks until shutdown
    """

    def __init__(
        self,
        host: str,
        port: int,
        backlog: int = 128,
        poll_interval: float = 0.5,
    ):
        """
        Initialize the socket server.

        Args:
            host: Address to bind to.
            port: Port to bind to (0 = any free port).
            backlog: Listen queue size.
            poll_interval: Seconds accept() waits before re-checking
                           whether shutdown was requested.

        Note: This does NOT create the socket. That happens in bind().
        """
        self.host = host
        self.port = port
        self.backlog = backlog
        self.poll_interval = poll_interval

        self._socket: Optional[socket.socket] = None
        self._bound_address: Optional[Tuple[str, int]] = None
        self._running = False
        self._serving = False
        # Reentrant: the signal handler calls shutdown() on the main
        # thread, possibly while that thread already holds the lock.
        self._lock = threading.RLock()

        # Set once the listening socket has been released
        self._shutdown_event = threading.Event()

        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        """Check if server is accepting connections."""
        return self._running

    @property
    def is_bound(self) -> bool:
        return self._socket is not None

    @property
    def address(self) -> Tuple[str, int]:
        """
        Get the server's bound address (host, port).

        After bind() this is the real address, so port 0 resolves to the
        port the OS picked. It stays valid after shutdown().
        """
        if self._bound_address is not None:
            return self._bound_address
        return (self.host, self.port)

    # =========================================================================
    # BIND
    # =========================================================================

    def _resolve(self) -> Tuple[int, tuple]:
        """
        Resolve host:port to (address_family, sockaddr).

        getaddrinfo() is what makes "localhost", "0.0.0.0" and "::" all
        work without us special-casing IPv6.
        """
        try:
            infos = socket.getaddrinfo(
                self.host, self.port,
                type=socket.SOCK_STREAM,
                flags=socket.AI_PASSIVE,
            )
        except (socket.gaierror, UnicodeError) as e:
            logger.error(f"Failed to bind to {self.host}:{self.port}: {e}")
            raise BindError(self.host, self.port, f"cannot resolve address: {e}") from e

        if not infos:
            raise BindError(self.host, self.port, "address did not resolve")

        family, _, _, _, sockaddr = infos[0]
        return family, sockaddr

    def _create_socket(self, family: int) -> socket.socket:
        """Create and configure the listening socket."""
        sock = socket.socket(family, socket.SOCK_STREAM)

        if os.name == "posix":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # accept() gives up after poll_interval so the loop can notice
        # shutdown(). Accepted sockets are switched back to blocking by
        # Connection.
        sock.settimeout(self.poll_interval)

        return sock

    def bind(self) -> None:
        """
        Create, bind and listen.

        Raises:
            BindError: Address in use, unresolvable, or not permitted.
                       Nothing is left open when this is raised.
            RuntimeError: If already bound.
        """
        with self._lock:
            if self._socket is not None:
                raise RuntimeError("Socket server is already bound")

            family, sockaddr = self._resolve()
            sock = None
            try:
                sock = self._create_socket(family)
                sock.bind(sockaddr)
                sock.listen(self.backlog)
            except (OSError, OverflowError) as e:
                if sock is not None:
                    sock.close()
                logger.error(f"Failed to bind to {self.host}:{self.port}: {e}")
                raise BindError(self.host, self.port, str(e)) from e

            sockname = sock.getsockname()
            self._bound_address = (sockname[0], sockname[1])
            self._socket = sock
            self._running = True
            self._shutdown_event.clear()

        host, port = self.address
        logger.info(f"tcp echo server is listening at {host}:{port}")

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def install_signal_handlers(self) -> bool:
        """
        Turn SIGTERM/SIGINT into a graceful shutdown.

        Returns:
            False if not on the main thread (handlers not installed).
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, skipping signal handlers")
            return False

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)
        return True

    def restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def serve_forever(self, connection_handler: ConnectionCallback) -> None:
        """
        Accept connections until shutdown() is called.

        This method BLOCKS. connection_handler must return quickly: the
        next accept() only happens after it returns.

        Raises:
            ListenerError: If accepting becomes impossible.
            RuntimeError: If bind() has not been called.
        """
        with self._lock:
            if self._socket is None:
                if self._shutdown_event.is_set():
                    return  # shutdown() won the race, nothing to serve
                raise RuntimeError("Socket server is not bound")
            self._serving = True

        try:
            self._accept_loop(connection_handler)
        finally:
            with self._lock:
                self._serving = False
            self._close_socket()

    def _accept_loop(self, connection_handler: ConnectionCallback) -> None:
        while self._running:
            try:
                client_socket, client_address = self._accept()
            except AcceptError as e:
                if e.error.errno in RESOURCE_ACCEPT_ERRNOS:
                    logger.error(f"{e} (out of resources, backing off)")
                    self._shutdown_event.wait(self.poll_interval)
                else:
                    logger.warning(f"{e}")
                continue

            if client_socket is None:
                continue  # Poll timeout, re-check running flag

            try:
                connection_handler(client_socket, client_address)
            except Exception as e:
                # The handler owns the socket once called, but if it
                # blew up before taking it, do not leak the descriptor.
                logger.exception(f"Connection handler failed for {client_address}: {e}")
                try:
                    client_socket.close()
                except OSError:
                    pass

    def _accept(self):
        """
        One accept() call.

        Returns:
            (socket, address), or (None, None) on poll timeout or after
            shutdown.

        Raises:
            AcceptError: Transient per-connection failure.
            ListenerError: The listener itself is broken.
        """
        sock = self._socket
        if sock is None:
            return None, None

        try:
            return sock.accept()
        except socket.timeout:
            # Normal: lets us check self._running periodically
            return None, None
        except OSError as e:
            if not self._running:
                return None, None  # We closed the socket ourselves
            if e.errno in TRANSIENT_ACCEPT_ERRNOS or e.errno in RESOURCE_ACCEPT_ERRNOS:
                raise AcceptError(e) from e
            logger.error(f"Accept loop failed: {e}")
            raise ListenerError(f"Cannot accept on {self.host}:{self.port}: {e}") from e

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self) -> None:
        """
        Stop accepting connections.

        Safe to call from signal handlers, other threads, or more than
        once. If the accept loop is running, it closes the socket on its
        next wake-up (at most poll_interval later). Otherwise the socket
        is closed right here.
        """
        with self._lock:
            was_running = self._running
            self._running = False
            serving = self._serving

        if was_running:
            logger.info("Shutting down socket server...")

        if not serving:
            self._close_socket()

    def _close_socket(self) -> None:
        with self._lock:
            sock, self._socket = self._socket, None

        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass  # Already closed
            logger.info("Socket server stopped")

        self._shutdown_event.set()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the listening socket has been released.

        Returns:
            True if shutdown completed, False if timeout.
        """
        return self._shutdown_event.wait(timeout)
