"""
=============================================================================
LOW-LEVEL TCP LISTENER
=============================================================================

Owns the listening socket: bind, listen, accept, close. Everything above
(registry, handlers, events) lives in AreaServer; this module only turns
incoming TCP handshakes into Connection objects.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create the listening socket
    2. bind()      Reserve HOST:PORT          ──► BindError on failure
    3. listen()    Start queueing handshakes (backlog)
    4. accept()    One new socket per client  ──► Connection(...)
    5. close()     Release the port

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── bound once, never
                    │   0.0.0.0:8080        │     carries frames
                    └───────────┬───────────┘
                                │ accept()
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    Connection a1b2         Connection c3d4         Connection e5f6

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR:  restart immediately without waiting out TIME_WAIT.
TCP_NODELAY:   responses are tiny; don't let Nagle hold them back.

SO_REUSEPORT is NOT set: with it, a second server on the
same port would bind successfully instead of failing with PORT_IN_USE.

=============================================================================
BIND ERRORS
=============================================================================

    errno              BindErrorKind
    ─────────────────  ─────────────────
    EADDRINUSE         PORT_IN_USE        another process has the port
    EACCES / EPERM     PERMISSION_DENIED  port < 1024 without privileges
    anything else      OTHER

=============================================================================
"""

import errno
import socket
import signal
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from ..errors import BindError, BindErrorKind
from .connection import Connection


logger = logging.getLogger(__name__)

# accept() wakes up this often to notice shutdown
ACCEPT_TIMEOUT = 1.0


def _bind_error_kind(err: OSError) -> BindErrorKind:
    if err.errno == errno.EADDRINUSE:
        return BindErrorKind.PORT_IN_USE
    if err.errno in (errno.EACCES, errno.EPERM):
        return BindErrorKind.PERMISSION_DENIED
    return BindErrorKind.OTHER


class SocketServer:
    """
    Low-level TCP listener.

        listener = SocketServer(config)
        listener.bind()                       # may raise BindError
        listener.serve(on_connection)         # blocks until shutdown()

    ``serve`` calls ``on_failure(error)`` if accept() breaks while the
    listener is still supposed to be running.
    """

    def __init__(self, config: ServerConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._shutdown_event = threading.Event()
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_bound(self) -> bool:
        return self._socket is not None

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); reflects the real port when config.port is 0."""
        if self._socket is not None:
            try:
                host, port = self._socket.getsockname()[:2]
                return (host, port)
            except OSError:
                pass
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(ACCEPT_TIMEOUT)
        return sock

    def bind(self):
        """
        Create, bind and listen.

        Raises:
            BindError: With the mapped kind; the socket is released.
        """
        if self._socket is not None:
            return

        sock = self._create_socket()
        host, port = self.config.host, self.config.port
        try:
            sock.bind((host, port))
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            kind = _bind_error_kind(e)
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            raise BindError(
                f"Cannot listen on {host}:{port}: {e.strerror or e}",
                kind, host=host, port=port, errno_value=e.errno,
            ) from e

        self._socket = sock
        self._running = True
        self._shutdown_event.clear()
        logger.info(f"Listening on {self.address[0]}:{self.address[1]}")

    # =========================================================================
    # SIGNALS (main thread only)
    # =========================================================================

    def install_signal_handlers(self):
        """
        Route SIGINT/SIGTERM to shutdown().

        signal.signal() only works in the main thread, so this is called by
        the blocking run() path, never by a server started in the background.
        """
        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def restore_signal_handlers(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def serve(
        self,
        connection_handler: Callable[[Connection], None],
        on_failure: Optional[Callable[[OSError], None]] = None,
    ):
        """
        Accept connections until shutdown() is called or accept() fails.

        Each accepted socket is wrapped in a Connection configured from
        ServerConfig and passed to ``connection_handler``.
        """
        if self._socket is None:
            raise RuntimeError("bind() must be called before serve()")

        try:
            while self._running:
                try:
                    client_socket, client_address = self._socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._running:
                        logger.error(f"Accept error: {e}")
                        if on_failure is not None:
                            on_failure(e)
                    break

                logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

                conn = Connection(
                    socket=client_socket,
                    address=client_address,
                    buffer_size=self.config.buffer_size,
                    timeout=self.config.timeout,
                    frame_delimiter=self.config.delimiter_bytes,
                    max_frame_size=self.config.max_frame_size,
                )
                connection_handler(conn)
        finally:
            self._cleanup()

    def shutdown(self):
        """Stop accepting. Idempotent and callable from any thread."""
        if not self._running:
            return
        logger.info("Shutting down listener...")
        self._running = False
        self._shutdown_event.set()

        # Wake a blocked accept() right away instead of waiting for the timeout
        sock = self._socket
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    def close(self):
        """Release the socket of a listener that was bound but never served."""
        self._running = False
        self._shutdown_event.set()
        self._cleanup()

    def _cleanup(self):
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
            logger.info("Listener stopped")

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown() is called; False on timeout."""
        return self._shutdown_event.wait(timeout)
