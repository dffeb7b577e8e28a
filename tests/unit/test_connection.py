"""
Unit tests for Connection framing and lifecycle.
"""

import threading
import time

import pytest

from areaserver.core.connection import Connection, ConnectionState


def make_conn(sock, **kwargs) -> Connection:
    return Connection(socket=sock, address=("127.0.0.1", 50000), **kwargs)


class TestConnectionBasics:

    def test_initial_state(self, socket_pair):
        conn = make_conn(socket_pair[0])

        assert conn.state == ConnectionState.CONNECTING
        assert len(conn.id) == 8
        assert conn.client_ip == "127.0.0.1"
        assert conn.client_port == 50000
        assert not conn.is_cancelled

    def test_mark_ready(self, socket_pair):
        conn = make_conn(socket_pair[0])
        conn.mark_ready()
        assert conn.state == ConnectionState.READY

    def test_unique_ids(self, socket_pair):
        ids = {make_conn(socket_pair[0]).id for _ in range(50)}
        assert len(ids) == 50


class TestPerReadFraming:
    """Tests for the default one-read-per-frame mode."""

    def test_read_frame(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side)

        client_side.sendall(b"2,3,4,5")

        assert conn.read_frame() == b"2,3,4,5"
        assert conn.frames_handled == 1
        assert conn.state == ConnectionState.RECEIVING

    def test_peer_closed(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side)

        client_side.close()

        assert conn.read_frame() is None

    def test_frame_limited_to_buffer_size(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side, buffer_size=64)

        client_side.sendall(b"1" * 100)

        assert len(conn.read_frame()) == 64

    def test_send_response(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side)

        assert conn.send_response(b"26,6,20") is True
        assert client_side.recv(100) == b"26,6,20"

    def test_idle_timeout(self, socket_pair):
        conn = make_conn(socket_pair[0], timeout=0.05)

        with pytest.raises(TimeoutError):
            conn.read_frame()


class TestDelimitedFraming:
    """Tests for delimiter framing."""

    def test_fragmented_frame(self, socket_pair):
        """Test a frame split across writes is reassembled."""
        server_side, client_side = socket_pair
        conn = make_conn(server_side, frame_delimiter=b"\n")

        def send_in_pieces():
            client_side.sendall(b"2,3,")
            time.sleep(0.05)
            client_side.sendall(b"4,5\n")

        threading.Thread(target=send_in_pieces).start()

        assert conn.read_frame() == b"2,3,4,5"

    def test_coalesced_frames(self, socket_pair):
        """Test two frames in one write come out as two frames."""
        server_side, client_side = socket_pair
        conn = make_conn(server_side, frame_delimiter=b"\n")

        client_side.sendall(b"1,1\n2,3\n")

        assert conn.read_frame() == b"1,1"
        assert conn.read_frame() == b"2,3"
        assert conn.frames_handled == 2

    def test_empty_frame(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side, frame_delimiter=b"\n")

        client_side.sendall(b"\n")

        assert conn.read_frame() == b""

    def test_incomplete_frame_at_eof(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side, frame_delimiter=b"\n")

        client_side.sendall(b"2,3")
        client_side.close()

        assert conn.read_frame() is None

    def test_frame_too_large(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side, frame_delimiter=b"\n",
                         buffer_size=64, max_frame_size=128)

        client_side.sendall(b"1," * 100)

        with pytest.raises(ValueError):
            conn.read_frame()

    def test_pipelined_bytes_not_counted(self, socket_pair):
        """Test a small frame followed by a large pipelined tail is accepted."""
        server_side, client_side = socket_pair
        conn = make_conn(server_side, frame_delimiter=b"\n",
                         buffer_size=4096, max_frame_size=16)

        client_side.sendall(b"2,3\n" + b"1," * 100)

        assert conn.read_frame() == b"2,3"

    def test_oversized_frame_with_delimiter(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side, frame_delimiter=b"\n",
                         buffer_size=4096, max_frame_size=16)

        client_side.sendall(b"1," * 20 + b"\n")

        with pytest.raises(ValueError):
            conn.read_frame()

    def test_response_terminated(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side, frame_delimiter=b"\n")

        conn.send_response(b"0")

        assert client_side.recv(100) == b"0\n"


class TestCancelAndClose:
    """Tests for cancel() and close()."""

    def test_cancel_unblocks_read(self, socket_pair):
        """Test cancel() from another thread ends a blocked read."""
        conn = make_conn(socket_pair[0])
        result = {}

        def reader():
            result["frame"] = conn.read_frame()

        thread = threading.Thread(target=reader)
        thread.start()
        time.sleep(0.05)

        conn.cancel()
        thread.join(timeout=2.0)

        assert not thread.is_alive()
        assert result["frame"] is None
        assert conn.is_cancelled

    def test_send_after_cancel(self, socket_pair):
        conn = make_conn(socket_pair[0])
        conn.cancel()

        assert conn.send_response(b"1") is False
        assert conn.last_error is not None

    def test_send_to_closed_peer(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side)
        client_side.close()

        # The first write may be buffered; a later one must fail
        results = [conn.send_response(b"1" * 65536) for _ in range(20)]

        assert False in results
        assert isinstance(conn.last_error, OSError)

    def test_close_idempotent(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_conn(server_side)

        conn.close()
        conn.close()

        assert conn.is_closed
        assert client_side.recv(10) == b""

    def test_close_bounded_against_chatty_peer(self, socket_pair):
        """Test close() returns even while the peer keeps sending."""
        server_side, client_side = socket_pair
        conn = make_conn(server_side)
        stop = threading.Event()

        def flood():
            try:
                while not stop.is_set():
                    client_side.sendall(b"1," * 512)
            except OSError:
                pass

        thread = threading.Thread(target=flood, daemon=True)
        thread.start()
        time.sleep(0.05)

        started = time.monotonic()
        conn.close()
        elapsed = time.monotonic() - started
        stop.set()
        thread.join(timeout=2.0)

        assert conn.is_closed
        assert elapsed < 1.0

    def test_context_manager(self, socket_pair):
        with make_conn(socket_pair[0]) as conn:
            pass
        assert conn.state == ConnectionState.CLOSED
