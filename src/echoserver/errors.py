"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the echo server can report falls into one of a few buckets,
and each bucket has a fixed blast radius:

    ┌──────────────────────┬──────────────────────────────────────────────┐
    │ Error                │ Who sees it                                  │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │ ConfigurationError   │ Bootstrap → process exits with status 1     │
    │ BindError            │ Whoever called EchoServer.start()            │
    │ AcceptError          │ Nobody - logged, accept loop continues       │
    │ ListenerError        │ Whoever called EchoServer.serve_forever()    │
    │ ConnectionIOError    │ Nobody - ends that one connection's pump     │
    └──────────────────────┴──────────────────────────────────────────────┘

Nothing is retried automatically. A supervisor (systemd, Kubernetes,
docker restart policy) is the place for retries.

=============================================================================
"""

from typing import Optional


class EchoServerError(Exception):
    """Base class for all echo server errors."""


class ConfigurationError(EchoServerError):
    """A required configuration value is missing or malformed."""


class BindError(EchoServerError):
    """
    The listening socket could not be bound.

    Raised for an address already in use, an address that does not
    resolve, or insufficient permission (ports < 1024 on Unix).

    Attributes:
        host: The host we tried to bind.
        port: The port we tried to bind.
    """

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(f"Failed to bind to {host}:{port}: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class AcceptError(EchoServerError):
    """
    Accepting one incoming connection failed.

    Transient by definition: the accept loop logs it and moves on.
    """

    def __init__(self, error: OSError):
        super().__init__(f"Accept failed: {error}")
        self.error = error


class ListenerError(EchoServerError):
    """The accept loop cannot continue (socket closed under us, bad fd)."""


class ConnectionIOError(EchoServerError):
    """A read or write on an established connection failed."""

    def __init__(self, connection_id: str, message: str, error: Optional[OSError] = None):
        super().__init__(f"[{connection_id}] {message}")
        self.connection_id = connection_id
        self.error = error
