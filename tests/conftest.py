"""
pytest configuration and fixtures.
"""

import socket
from typing import Generator, List, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from areaserver import AreaServer, ServerConfig, QueueObserver


# Short enough to keep the suite fast, long enough to observe in-flight batches
TEST_DELAY = 0.05


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        per_rectangle_delay=TEST_DELAY,
        min_workers=2,
        max_workers=4,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def events() -> QueueObserver:
    """Observer that records every event for assertions."""
    return QueueObserver()


class TestServer:
    """Test server helper that runs AreaServer in the background."""

    __test__ = False  # Not a test class

    def __init__(self, server: AreaServer):
        self.server = server

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        self.server.start()
        return self

    def stop(self):
        self.server.stop()

    def connect(self, timeout: float = 5.0) -> socket.socket:
        """Open a raw client socket to the server."""
        return socket.create_connection(("127.0.0.1", self.port), timeout=timeout)

    def request(self, payload: bytes, sock: Optional[socket.socket] = None) -> bytes:
        """Send one request and read one response (per-read framing)."""
        if sock is not None:
            sock.sendall(payload)
            return sock.recv(4096)
        with self.connect() as s:
            s.sendall(payload)
            return s.recv(4096)


@pytest.fixture
def server_factory() -> Generator:
    """Start servers with custom configs; all are stopped after the test."""
    started = []

    def factory(config: ServerConfig, observer=None) -> TestServer:
        srv = TestServer(AreaServer(config, observer=observer)).start()
        started.append(srv)
        return srv

    yield factory

    for srv in started:
        srv.stop()


@pytest.fixture
def test_server(server_factory, config: ServerConfig, events: QueueObserver) -> TestServer:
    """A running server on an ephemeral port, stopped after the test."""
    return server_factory(config, observer=events)


@pytest.fixture
def socket_pair() -> Generator[List[socket.socket], None, None]:
    """Connected (server_side, client_side) sockets, closed after the test."""
    server_side, client_side = socket.socketpair()
    yield [server_side, client_side]
    for s in (server_side, client_side):
        try:
            s.close()
        except OSError:
            pass
