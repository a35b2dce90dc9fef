"""
Unit tests for Connection and ConnectionPump.

These use socket.socketpair(): one end is the "client", the other is
wrapped in a Connection as if it had just been accepted.
"""

import logging
import socket
import threading

import pytest

from echoserver.core.connection import Connection, ConnectionState
from echoserver.core.pump import ConnectionPump
from echoserver.errors import ConnectionIOError

from conftest import recv_exactly, recv_until_eof


@pytest.fixture
def pair():
    """(client socket, server-side Connection)."""
    client, server = socket.socketpair()
    client.settimeout(5.0)
    conn = Connection(socket=server, address=("127.0.0.1", 50000), buffer_size=16)
    yield client, conn
    client.close()
    conn.close()


class TestConnection:
    """Tests for the Connection wrapper."""

    def test_initial_state(self, pair):
        _, conn = pair

        assert conn.state == ConnectionState.OPEN
        assert conn.bytes_echoed == 0
        assert len(conn.id) == 8

    def test_remote_address(self, pair):
        _, conn = pair
        assert conn.remote_address == "127.0.0.1:50000"

    def test_remote_address_ipv6(self):
        client, server = socket.socketpair()
        with client, Connection(socket=server, address=("::1", 7, 0, 0)) as conn:
            assert conn.remote_address == "[::1]:7"

    def test_recv_and_send(self, pair):
        client, conn = pair

        client.sendall(b"ping")
        data = conn.recv()
        conn.send(data)

        assert data == b"ping"
        assert client.recv(16) == b"ping"
        assert conn.bytes_echoed == 4

    def test_recv_respects_buffer_size(self, pair):
        client, conn = pair

        client.sendall(b"x" * 40)

        assert len(conn.recv()) <= 16

    def test_recv_eof(self, pair):
        client, conn = pair

        client.shutdown(socket.SHUT_WR)

        assert conn.recv() == b""

    def test_half_close(self, pair):
        client, conn = pair

        conn.half_close()

        assert conn.state == ConnectionState.HALF_CLOSED
        assert client.recv(16) == b""  # Client sees our FIN

    def test_close_is_idempotent(self, pair):
        _, conn = pair

        conn.close()
        conn.close()

        assert conn.state == ConnectionState.CLOSED
        assert conn.is_closed

    def test_half_close_after_close_is_noop(self, pair):
        _, conn = pair

        conn.close()
        conn.half_close()

        assert conn.state == ConnectionState.CLOSED

    def test_recv_error_is_wrapped(self, pair):
        _, conn = pair
        conn.socket.close()

        with pytest.raises(ConnectionIOError) as exc_info:
            conn.recv()

        assert exc_info.value.connection_id == conn.id
        assert isinstance(exc_info.value.error, OSError)

    def test_send_error_is_wrapped(self, pair):
        client, conn = pair
        client.close()

        with pytest.raises(ConnectionIOError, match="Write failed"):
            # The first write may still land in the kernel buffer
            for _ in range(100):
                conn.send(b"x" * 65536)

    def test_context_manager_closes(self):
        client, server = socket.socketpair()
        with client:
            with Connection(socket=server, address=("127.0.0.1", 1)) as conn:
                pass
            assert conn.state == ConnectionState.CLOSED


class TestConnectionPump:
    """Tests for the per-connection echo loop."""

    def test_echo_then_eof(self, pair):
        """Test bytes come back in order and the pump ends on EOF."""
        client, conn = pair
        closed = []

        pump = ConnectionPump(conn, on_close=closed.append)
        pump.start()

        client.sendall(b"hello")
        assert recv_exactly(client, 5) == b"hello"

        client.shutdown(socket.SHUT_WR)
        assert recv_until_eof(client) == b""

        pump.join(timeout=5.0)
        assert not pump.is_alive()
        assert closed == [conn]
        assert conn.state == ConnectionState.CLOSED
        assert pump.error is None

    def test_large_payload_larger_than_buffer(self, pair):
        """Test data many times the buffer size round-trips intact."""
        client, conn = pair
        payload = bytes(range(256)) * 64

        pump = ConnectionPump(conn)
        pump.start()

        def send_all():
            client.sendall(payload)
            client.shutdown(socket.SHUT_WR)

        # Send from another thread: the echo comes back while we send
        sender = threading.Thread(target=send_all)
        sender.start()
        received = recv_until_eof(client)
        sender.join(timeout=5.0)

        pump.join(timeout=5.0)
        assert received == payload
        assert conn.bytes_echoed == len(payload)

    def test_half_close_delivers_everything(self, pair):
        """Test data sent before EOF is still echoed after it."""
        client, conn = pair

        client.sendall(b"abc")
        client.sendall(b"def")
        client.shutdown(socket.SHUT_WR)

        pump = ConnectionPump(conn)
        pump.start()

        assert recv_until_eof(client) == b"abcdef"
        pump.join(timeout=5.0)

    def test_io_error_ends_pump(self, pair):
        """Test a reset peer ends the pump without raising."""
        client, conn = pair
        closed = []

        pump = ConnectionPump(conn, on_close=closed.append)
        conn.socket.shutdown(socket.SHUT_RDWR)
        conn.socket.close()
        pump.start()
        pump.join(timeout=5.0)

        assert not pump.is_alive()
        assert closed == [conn]
        assert conn.state == ConnectionState.CLOSED

    def test_on_close_failure_is_contained(self, pair):
        client, conn = pair

        def broken(_):
            raise RuntimeError("boom")

        pump = ConnectionPump(conn, on_close=broken)
        pump.start()
        client.shutdown(socket.SHUT_WR)
        pump.join(timeout=5.0)

        assert not pump.is_alive()
        assert conn.state == ConnectionState.CLOSED

    def test_pump_runs_in_daemon_thread(self, pair):
        _, conn = pair
        pump = ConnectionPump(conn)

        assert pump.daemon is True
        assert pump.name == f"Pump-{conn.id}"

    def test_clean_close_logs_one_summary(self, pair, caplog):
        client, conn = pair
        pump = ConnectionPump(conn)

        with caplog.at_level(logging.DEBUG, logger="echoserver"):
            pump.start()
            client.sendall(b"abc")
            client.shutdown(socket.SHUT_WR)
            assert recv_until_eof(client) == b"abc"
            pump.join(timeout=5.0)

        records = [r for r in caplog.records if r.name.startswith("echoserver")]
        assert len(records) == 1
        assert "3 bytes echoed" in records[0].getMessage()

    def test_io_error_logs_one_line(self, pair, caplog):
        """Test a dropped connection logs the error and no close summary."""
        _, conn = pair
        pump = ConnectionPump(conn)
        conn.socket.close()

        with caplog.at_level(logging.DEBUG, logger="echoserver"):
            pump.start()
            pump.join(timeout=5.0)

        records = [r for r in caplog.records if r.name.startswith("echoserver")]
        assert len(records) == 1
        assert "Connection error" in records[0].getMessage()
        assert pump.error is not None
