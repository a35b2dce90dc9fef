"""
=============================================================================
ECHOSERVER - TCP Echo Server
=============================================================================

Accepts TCP connections and writes back to each one exactly the bytes it
reads from it, until the peer closes. Useful as a load-balancer backend
for health checks, for verifying a network path, or as a baseline when
benchmarking connection handling.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    echoserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m echoserver)
    ├── server.py            # EchoServer (the listener)
    ├── config.py            # ServerConfig + config file/env resolution
    ├── errors.py            # Error taxonomy
    └── core/                # Low-level components
        ├── socket_server.py # Bind + accept loop
        ├── connection.py    # Client socket wrapper
        ├── pump.py          # Per-connection echo thread
        ├── registry.py      # Open-connection set
        └── metrics.py       # Debug-mode sampler

=============================================================================
QUICK START
=============================================================================

    from echoserver import EchoServer, ServerConfig

    server = EchoServer(ServerConfig(host="0.0.0.0", port=7007, debug=True))
    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .server import EchoServer, create_server
from .config import ServerConfig, resolve_config
from .errors import (
    EchoServerError,
    ConfigurationError,
    BindError,
    AcceptError,
    ListenerError,
    ConnectionIOError,
)

__all__ = [
    "EchoServer",
    "create_server",
    "ServerConfig",
    "resolve_config",
    "EchoServerError",
    "ConfigurationError",
    "BindError",
    "AcceptError",
    "ListenerError",
    "ConnectionIOError",
    "__version__",
]
