"""
Integration tests: real TCP round trips against a running AreaServer.
"""

import socket
import threading
import time

import pytest

from areaserver import AreaServer, BindError, BindErrorKind, EventKind, QueueObserver
from areaserver.config import ServerConfig


class TestRoundTrip:
    """Wire-level request/response behaviour."""

    @pytest.mark.parametrize("payload,expected", [
        (b"2,3,4,5", b"26,6,20"),
        (b"1,1", b"1,1"),
        (b"2,3,x,5", b"6,6"),
        (b" ", b"0"),
        (b"2.5,1.5", b"3.75,3.75"),
        (b"1e200,1e200,2,3", b"6,6"),
    ])
    def test_request(self, test_server, payload, expected):
        assert test_server.request(payload) == expected

    def test_several_requests_one_connection(self, test_server):
        with test_server.connect() as sock:
            assert test_server.request(b"1,1", sock) == b"1,1"
            assert test_server.request(b"2,3,4,5", sock) == b"26,6,20"
            assert test_server.request(b"1,2,3", sock) == b"0"
            assert test_server.request(b"3,3", sock) == b"9,9"

    def test_batch_runs_concurrently(self, server_factory, config):
        """Test N rectangles take about one delay, not N."""
        config.per_rectangle_delay = 0.3
        srv = server_factory(config)

        start = time.monotonic()
        response = srv.request(b",".join([b"1,1"] * 10))

        assert response == b"10" + b",1" * 10
        assert time.monotonic() - start < 2.0

    def test_last_result_shared(self, test_server):
        test_server.request(b"2,3,4,5")

        snapshot = test_server.server.state.snapshot()
        assert snapshot.total_area == 26.0
        assert snapshot.areas == [6.0, 20.0]


class TestIsolation:
    """Connections don't see each other's batches."""

    def test_parallel_connections(self, test_server):
        payloads = {i: f"{i},1,{i},2".encode() for i in range(1, 6)}
        responses = {}

        def client(i):
            responses[i] = test_server.request(payloads[i])

        threads = [threading.Thread(target=client, args=(i,)) for i in payloads]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5.0)

        for i in payloads:
            assert responses[i] == f"{3 * i},{i},{2 * i}".encode()

    def test_closing_one_leaves_other_untouched(self, server_factory, config, events):
        """Test closing a client mid-batch doesn't disturb another client."""
        config.per_rectangle_delay = 0.3
        srv = server_factory(config, observer=events)

        victim = srv.connect()
        survivor = srv.connect()
        try:
            victim.sendall(b"1,1")
            survivor.sendall(b"2,3,4,5")
            time.sleep(0.05)
            victim.close()

            assert survivor.recv(4096) == b"26,6,20"
        finally:
            survivor.close()


class TestConnectionTracking:
    """Registry and close events."""

    def test_opened_then_closed(self, test_server, events):
        with test_server.connect() as sock:
            opened = events.wait_for(EventKind.CONNECTION_OPENED, timeout=2.0)
            assert opened is not None
            assert test_server.server.connection_count == 1
            test_server.request(b"1,1", sock)

        closed = events.wait_for(
            EventKind.CONNECTION_CLOSED, timeout=2.0,
            predicate=lambda e: e.connection_id == opened.connection_id,
        )
        assert closed is not None
        assert test_server.server.connection_count == 0

    def test_close_mid_computation(self, server_factory, config, events):
        """Test a client leaving mid-batch is deregistered."""
        config.per_rectangle_delay = 1.0
        srv = server_factory(config, observer=events)

        sock = srv.connect()
        sock.sendall(b"1,1,2,2")
        opened = events.wait_for(EventKind.CONNECTION_OPENED, timeout=2.0)
        events.wait_for(EventKind.BATCH_STARTED, timeout=2.0)
        sock.close()

        closed = events.wait_for(
            EventKind.CONNECTION_CLOSED, timeout=3.0,
            predicate=lambda e: e.connection_id == opened.connection_id,
        )
        assert closed is not None
        deadline = time.monotonic() + 2.0
        while srv.server.connection_count and time.monotonic() < deadline:
            time.sleep(0.01)
        assert srv.server.connection_count == 0

    def test_pool_stats(self, test_server, config):
        test_server.request(b"1,1")

        stats = test_server.server.pool_stats
        assert config.min_workers <= stats["workers"] <= config.max_workers
        assert stats["failed"] == 0

    def test_result_updated_event(self, test_server, events):
        test_server.request(b"2,3,4,5")

        event = events.wait_for(EventKind.RESULT_UPDATED, timeout=2.0)
        assert event.data["result"].areas == [6.0, 20.0]


class TestLifecycle:
    """start/stop behaviour."""

    def test_address_reports_bound_port(self, test_server):
        host, port = test_server.server.address
        assert host == "127.0.0.1"
        assert port != 0

    def test_started_event(self, test_server, events):
        event = events.wait_for(EventKind.SERVER_STARTED, timeout=2.0)
        assert event.data["address"] == test_server.server.address

    def test_stop_idempotent(self, config):
        events = QueueObserver()
        server = AreaServer(config, observer=events)
        server.start()

        server.stop()
        server.stop()

        stopped = [e for e in events.drain() if e.kind is EventKind.SERVER_STOPPED]
        assert len(stopped) == 1
        assert not server.is_running
        assert server.wait_stopped(timeout=1.0)

    def test_stop_cancels_live_connections(self, config):
        """Test stop() closes connections and reports each one once."""
        config.per_rectangle_delay = 5.0
        events = QueueObserver()
        server = AreaServer(config, observer=events)
        host, port = server.start()

        clients = [socket.create_connection((host, port), timeout=5.0) for _ in range(2)]
        try:
            clients[0].sendall(b"1,1")
            deadline = time.monotonic() + 2.0
            while server.connection_count < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
            time.sleep(0.1)  # let the first handler pick up its request

            start = time.monotonic()
            server.stop()
            assert time.monotonic() - start < 4.0

            for c in clients:
                assert c.recv(4096) == b""

            closed = [e for e in events.drain() if e.kind is EventKind.CONNECTION_CLOSED]
            assert len(closed) == 2
            assert len({e.connection_id for e in closed}) == 2
            assert server.connection_count == 0
        finally:
            for c in clients:
                c.close()

    def test_listener_failure_stops_server(self, config):
        """Test a broken listening socket reports server_error, then stops."""
        events = QueueObserver()
        server = AreaServer(config, observer=events)
        host, port = server.start()

        client = socket.create_connection((host, port), timeout=5.0)
        try:
            deadline = time.monotonic() + 2.0
            while server.connection_count < 1 and time.monotonic() < deadline:
                time.sleep(0.01)

            # accept() now fails with EINVAL while the server still expects it to work
            server._socket_server._socket.shutdown(socket.SHUT_RDWR)

            assert server.wait_stopped(timeout=5.0)
            assert not server.is_running
            assert server.connection_count == 0
            assert client.recv(4096) == b""

            kinds = [e.kind for e in events.drain()]
            assert EventKind.SERVER_ERROR in kinds
            assert EventKind.SERVER_STOPPED in kinds
            assert kinds.index(EventKind.SERVER_ERROR) < kinds.index(EventKind.SERVER_STOPPED)
            assert kinds.count(EventKind.CONNECTION_CLOSED) == 1
        finally:
            client.close()
            server.stop()

    def test_port_released_after_stop(self, config):
        server = AreaServer(config)
        host, port = server.start()
        server.stop()

        with pytest.raises(OSError):
            socket.create_connection((host, port), timeout=1.0)

    def test_context_manager(self, config):
        with AreaServer(config) as server:
            host, port = server.address
            with socket.create_connection((host, port), timeout=5.0) as sock:
                sock.sendall(b"1,2")
                assert sock.recv(100) == b"2,2"
        assert not server.is_running


class TestBindFailure:
    """BindError mapping."""

    def test_port_in_use(self, test_server, config):
        port = test_server.port
        other = AreaServer(ServerConfig(host="127.0.0.1", port=port,
                                        per_rectangle_delay=0.05))

        with pytest.raises(BindError) as exc_info:
            other.start()

        assert exc_info.value.kind == BindErrorKind.PORT_IN_USE
        assert exc_info.value.port == port
        assert not other.is_running

    def test_start_with_port_argument(self, config, free_port):
        server = AreaServer(config)
        try:
            assert server.start(port=free_port)[1] == free_port
        finally:
            server.stop()


class TestDelimiterFraming:
    """Newline-delimited mode over real TCP."""

    def test_coalesced_and_fragmented(self, server_factory, config):
        config.frame_delimiter = "\n"
        srv = server_factory(config)

        with srv.connect() as sock:
            sock.sendall(b"1,1\n2,")
            time.sleep(0.05)
            sock.sendall(b"3\n")

            received = b""
            while received.count(b"\n") < 2:
                chunk = sock.recv(4096)
                assert chunk
                received += chunk

        assert received == b"1,1\n6,6\n"

    def test_empty_frame(self, server_factory, config):
        """Test an empty delimited frame is the degenerate "0" request."""
        config.frame_delimiter = "\n"
        srv = server_factory(config)

        with srv.connect() as sock:
            sock.sendall(b"\n")
            assert sock.recv(100) == b"0\n"


class TestStrictPolicy:

    def test_invalid_pair_rejected(self, server_factory, config):
        config.parse_policy = "strict"
        srv = server_factory(config)

        assert srv.request(b"2,3,x,5") == b"0"
        assert srv.request(b"2,3,4,5") == b"26,6,20"
