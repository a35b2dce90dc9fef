"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Callable, Generator, List

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from echoserver import EchoServer, ServerConfig
from echoserver.core import MetricsSnapshot


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    """Read exactly size bytes (or fewer if the peer closes)."""
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def recv_until_eof(sock: socket.socket) -> bytes:
    data = b""
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            return data
        data += chunk


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class TestServer:
    """Test server helper that runs the accept loop in a background thread."""

    __test__ = False  # Not a test class

    def __init__(self, server: EchoServer):
        self.server = server
        self._thread: threading.Thread = None
        self.error: BaseException = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        """Bind, then serve in a background thread."""
        self.server.start()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        try:
            self.server.serve_forever()
        except BaseException as e:
            self.error = e

    def connect(self, timeout: float = 5.0) -> socket.socket:
        return socket.create_connection(("127.0.0.1", self.port), timeout=timeout)

    def stop(self):
        """Stop the server."""
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def make_server() -> Generator[Callable[..., TestServer], None, None]:
    """Factory for running servers; all are stopped at teardown."""
    servers: List[TestServer] = []

    def factory(**overrides) -> TestServer:
        on_sample = overrides.pop("on_sample", None)
        values = {"host": "127.0.0.1", "port": 0}
        values.update(overrides)
        test_srv = TestServer(EchoServer(ServerConfig(**values), on_sample=on_sample))
        test_srv.start()
        servers.append(test_srv)
        return test_srv

    yield factory

    for test_srv in servers:
        test_srv.stop()


@pytest.fixture
def echo_server(make_server) -> TestServer:
    """A running echo server on an ephemeral port."""
    return make_server()


@pytest.fixture
def debug_server(make_server) -> TestServer:
    """A running echo server in debug mode, sampling every 50 ms."""
    samples: List[MetricsSnapshot] = []
    test_srv = make_server(debug=True, metrics_interval=0.05, on_sample=samples.append)
    test_srv.samples = samples
    return test_srv
