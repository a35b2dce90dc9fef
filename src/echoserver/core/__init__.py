"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The low-level building blocks of the echo server:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Binds host:port, runs the accept() loop                          │
    │  • Separates transient accept errors from fatal ones                │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Hands off each client socket
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                   CONNECTION + CONNECTION PUMP                       │
    │  • One thread per connection: recv() → sendall() → recv() ...      │
    │  • Half-close on EOF, contained I/O errors                          │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Registers / unregisters
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                 CONNECTION REGISTRY + METRICS SAMPLER                │
    │  • Lock-protected set of open connections                           │
    │  • Optional periodic open-connection count (debug mode)            │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .pump import ConnectionPump
from .registry import ConnectionRegistry, MetricsSnapshot
from .metrics import MetricsSampler

__all__ = [
    "SocketServer",        # Listening socket + accept loop
    "Connection",          # Wrapper for one client socket
    "ConnectionState",     # OPEN / HALF_CLOSED / CLOSED
    "ConnectionPump",      # Per-connection echo thread
    "ConnectionRegistry",  # Thread-safe open-connection set
    "MetricsSnapshot",     # Point-in-time counts
    "MetricsSampler",      # Periodic debug-mode sampler
]
