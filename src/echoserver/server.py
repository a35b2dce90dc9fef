"""
=============================================================================
ECHO SERVER
=============================================================================

The listener: ties the socket server, the per-connection pumps, the
connection registry and the optional metrics sampler together.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   EchoServer    │                          │
    │                        │   (Listener)    │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────────┐  ┌──────────────┐      │
    │    │ SocketServer │    │ConnectionRegistry│  │MetricsSampler│      │
    │    │ (accept loop)│    │ (open set)       │◄─┤ (debug only) │      │
    │    └──────┬───────┘    └────────▲─────────┘  └──────────────┘      │
    │           │ per client          │ add / discard                     │
    │           ▼                     │                                    │
    │    ┌──────────────┐             │                                    │
    │    │ConnectionPump├─────────────┘                                    │
    │    │ (1 thread)   │                                                  │
    │    └──────────────┘                                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONNECTION FLOW
=============================================================================

    1. ACCEPT
       └── SocketServer.accept() returns a client socket

    2. REGISTER
       └── Added to the registry BEFORE any byte is relayed, so the
           open-connection count is never understated

    3. DISPATCH
       └── A new ConnectionPump thread; accept() resumes immediately

    4. ECHO
       └── recv() → sendall() until EOF or I/O error

    5. UNREGISTER
       └── Pump releases the socket, then removes it from the registry

=============================================================================
SHUTDOWN
=============================================================================

shutdown() stops accepting and releases the port, and stops the sampler.
Connections that are still open are NOT cut: they end when their peer
closes. shutdown(wait=True, timeout=...) waits for that, up to a bound.

=============================================================================
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, Optional, Tuple

from .config import ServerConfig
from .core import (
    SocketServer, Connection, ConnectionPump,
    ConnectionRegistry, MetricsSnapshot, MetricsSampler,
)


logger = logging.getLogger(__name__)


class EchoServer:
    """
    TCP echo server.

    Usage:
        server = EchoServer(ServerConfig(host="0.0.0.0", port=7007))

        # Blocking, with signal handling and graceful shutdown
        server.run()

        # Or step by step (e.g. in a background thread)
        server.start()                 # Raises BindError
        threading.Thread(target=server.serve_forever).start()
        ...
        server.shutdown(wait=True, timeout=5.0)
    """

    def __init__(
        self,
        config: ServerConfig,
        on_sample: Optional[Callable[[MetricsSnapshot], None]] = None,
    ):
        """
        Initialize the echo server.

        Args:
            config: Resolved server configuration.
            on_sample: Extra sink for debug-mode metrics samples.
        """
        config.validate()  # Fail-fast on invalid config
        self.config = config
        self._on_sample = on_sample

        self._registry = ConnectionRegistry()
        self._socket_server: Optional[SocketServer] = None
        self._sampler: Optional[MetricsSampler] = None
        self._lock = threading.Lock()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._socket_server is not None and self._socket_server.is_running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port), or the configured one before start()."""
        if self._socket_server is not None:
            return self._socket_server.address
        return (self.config.host, self.config.port)

    @property
    def open_connections(self) -> int:
        """Connections accepted and not yet fully closed."""
        return len(self._registry)

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    def metrics_snapshot(self) -> MetricsSnapshot:
        return self._registry.snapshot()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """
        Bind the listening socket.

        Returns as soon as the socket is listening; connections are
        accepted once serve_forever() runs (the OS queues them until
        then).

        Args:
            host: Override config host.
            port: Override config port.

        Raises:
            BindError: If host:port cannot be bound.
            RuntimeError: If the server was already started.
        """
        with self._lock:
            if self._socket_server is not None:
                raise RuntimeError("Echo server already started")

            if host is not None or port is not None:
                self.config = replace(
                    self.config,
                    host=self.config.host if host is None else host,
                    port=self.config.port if port is None else port,
                )
                self.config.validate()

            socket_server = SocketServer(
                host=self.config.host,
                port=self.config.port,
                backlog=self.config.backlog,
            )
            socket_server.bind()
            self._socket_server = socket_server

            if self.config.debug:
                self._sampler = MetricsSampler(
                    self.metrics_snapshot,
                    interval=self.config.metrics_interval,
                    on_sample=self._on_sample,
                )
                self._sampler.start()

    def serve_forever(self) -> None:
        """
        Run the accept loop until shutdown() is called.

        Raises:
            ListenerError: If accepting becomes impossible.
            RuntimeError: If start() has not been called.
        """
        if self._socket_server is None:
            raise RuntimeError("Echo server not started")

        try:
            self._socket_server.serve_forever(self._handle_connection)
        finally:
            self._stop_sampler()

    def run(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """
        Start the server (blocking).

        Installs SIGINT/SIGTERM handlers when called from the main
        thread, and on exit waits up to config.shutdown_timeout for open
        connections to finish.

        Raises:
            BindError: If host:port cannot be bound.
            ListenerError: If the accept loop dies.
        """
        self.start(host, port)

        installed = self._socket_server.install_signal_handlers()
        try:
            self.serve_forever()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            if installed:
                self._socket_server.restore_signal_handlers()
            self.shutdown(wait=True, timeout=self.config.shutdown_timeout)

    def shutdown(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting connections and stop the sampler.

        Idempotent. Open connections keep running until their peer
        closes them.

        Args:
            wait: Whether to wait for open connections to close.
            timeout: Maximum time to wait. None = wait forever.

        Returns:
            False if waiting timed out with connections still open.
        """
        if self._socket_server is not None:
            self._socket_server.shutdown()
        self._stop_sampler()

        if not wait:
            return True

        remaining = len(self._registry)
        if remaining:
            logger.info(f"Waiting for {remaining} open connections to close...")

        drained = self._registry.wait_until_empty(timeout)
        if not drained:
            logger.warning(
                f"{len(self._registry)} connections still open after {timeout}s, "
                f"leaving them to their peers"
            )
        else:
            logger.info("Server stopped")
        return drained

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Wait until the listening socket has been released."""
        if self._socket_server is None:
            return True
        return self._socket_server.wait_for_shutdown(timeout)

    def _stop_sampler(self) -> None:
        sampler = self._sampler
        if sampler is not None:
            sampler.stop(timeout=1.0)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, client_socket, client_address) -> None:
        """
        Register a new connection and hand it to its own pump.

        Called by SocketServer in the accept loop, so it must not block.
        """
        conn = Connection(
            socket=client_socket,
            address=client_address,
            buffer_size=self.config.buffer_size,
        )

        # Register first: the count must never be understated
        self._registry.add(conn)

        if self.config.debug:
            logger.debug(f"connection from {conn.remote_address} is now open")

        pump = ConnectionPump(conn, on_close=self._on_connection_closed)
        try:
            pump.start()
        except RuntimeError as e:
            # can't start new thread
            logger.error(f"[{conn.id}] Cannot start pump for {conn.remote_address}: {e}")
            conn.close()
            self._on_connection_closed(conn)

    def _on_connection_closed(self, conn: Connection) -> None:
        """Pump finished: the connection leaves the open set."""
        if self._registry.discard(conn) and self.config.debug:
            logger.debug(f"connection from {conn.remote_address} is now closed")


def create_server(
    config: ServerConfig,
    on_sample: Optional[Callable[[MetricsSnapshot], None]] = None,
) -> EchoServer:
    """Factory function for creating server instances."""
    return EchoServer(config, on_sample=on_sample)
