"""
=============================================================================
AREA SERVER
=============================================================================

The orchestrator that ties the listener, the connection workers, the area
engine and the observer together.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      AREA SERVER ARCHITECTURE                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   AreaServer    │                          │
    │                        │ (Orchestrator)  │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │        ┌───────────────┬────────┴───────┬────────────────┐          │
    │        ▼               ▼                ▼                ▼          │
    │  ┌────────────┐ ┌────────────┐  ┌──────────────┐  ┌────────────┐    │
    │  │SocketServer│ │ ThreadPool │  │  Connection  │  │ServerState │    │
    │  │ (accept)   │ │ (per conn) │  │  Registry    │  │(last total)│    │
    │  └─────┬──────┘ └─────┬──────┘  └──────────────┘  └────────────┘    │
    │        │              │                                              │
    │        ▼              ▼                                              │
    │  ┌────────────┐ ┌──────────────────┐     ┌──────────────────┐       │
    │  │ Connection │ │ConnectionHandler │ ──► │    AreaEngine    │       │
    │  │ (framing)  │ │ (receive loop)   │     │ (thread per rect)│       │
    │  └────────────┘ └──────────────────┘     └──────────────────┘       │
    │                                                                      │
    │         every component reports through one ServerObserver          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    1. CLIENT CONNECTS
       └── SocketServer accepts, wraps the socket in a Connection

    2. REGISTER
       └── Connection inserted in the registry, connection_opened emitted

    3. QUEUE FOR PROCESSING
       └── ConnectionHandler.handle(conn) submitted to the ThreadPool

    4. RECEIVE LOOP (Worker Thread)
       └── read frame → parse → compute batch → send "total,a1,..."

    5. CLOSE
       └── peer closed / I/O error / stop(): deregister, connection_closed

=============================================================================
SHUTDOWN
=============================================================================

    stop():
        1. Stop accepting new connections
        2. Cancel every live connection (in-flight batches give up)
        3. Clear the registry (one connection_closed per connection)
        4. Shut the thread pool down
        5. Emit server_stopped

    A second stop() is a no-op. A listener that fails on its own reports
    server_error and then stops the server the same way.

=============================================================================
"""

import logging
import threading
from typing import Optional, Tuple

from .config import ServerConfig
from .core.connection import Connection
from .core.handler import ConnectionHandler
from .core.registry import ConnectionRegistry
from .core.socket_server import SocketServer
from .core.thread_pool import ThreadPool
from .engine import AreaEngine
from .observer import LoggingObserver, ServerObserver, notify
from .protocol.codec import ParsePolicy
from .state import ServerState


logger = logging.getLogger(__name__)

# Upper bound for joining the accept thread and draining the pool on stop()
STOP_TIMEOUT = 5.0


class AreaServer:
    """
    Multi-threaded rectangle-area TCP server.

    =========================================================================
    USAGE
    =========================================================================

        # Blocking (CLI): installs SIGINT/SIGTERM handlers
        server = AreaServer(ServerConfig(port=8080))
        server.run()

        # Background (tests, embedding)
        server = AreaServer(ServerConfig(port=0, per_rectangle_delay=0.05))
        host, port = server.start()
        ...
        server.stop()

    =========================================================================
    OBSERVING
    =========================================================================

    Pass any ServerObserver to follow connections, batches and results.
    Defaults to a LoggingObserver in the configured log format.

        events = QueueObserver()
        server = AreaServer(config, observer=ObserverGroup(LoggingObserver(), events))

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        observer: Optional[ServerObserver] = None,
    ):
        """
        Initialize the area server.

        Args:
            config: Server configuration. Uses defaults if not provided.
            observer: Event sink. Defaults to LoggingObserver.

        Raises:
            ValueError: If the configuration is invalid.
        """
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        if observer is None:
            observer = LoggingObserver(log_format=self.config.log_format)
        self.observer = observer

        # ─────────────────────────────────────────────────────────────────
        # SHARED STATE
        # ─────────────────────────────────────────────────────────────────

        self._registry = ConnectionRegistry()
        self._state = ServerState(self._registry)

        # ─────────────────────────────────────────────────────────────────
        # APPLICATION COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        self._engine = AreaEngine(
            delay=self.config.per_rectangle_delay,
            jitter=self.config.delay_jitter,
            observer=self.observer,
        )
        self._handler = ConnectionHandler(
            engine=self._engine,
            registry=self._registry,
            state=self._state,
            observer=self.observer,
            policy=ParsePolicy.from_name(self.config.parse_policy),
        )

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE (created per start())
        # ─────────────────────────────────────────────────────────────────

        self._socket_server: Optional[SocketServer] = None
        self._thread_pool: Optional[ThreadPool] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._address: Optional[Tuple[str, int]] = None

        self._lock = threading.Lock()  # Guards start/stop transitions
        self._running = False
        self._stopped = threading.Event()
        self._stopped.set()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """Actually bound (host, port); the configured one before start()."""
        if self._address is not None:
            return self._address
        return (self.config.host, self.config.port)

    @property
    def connection_count(self) -> int:
        return len(self._registry)

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def state(self) -> ServerState:
        """Most recent batch result, shared by all connections."""
        return self._state

    @property
    def engine(self) -> AreaEngine:
        return self._engine

    @property
    def pool_stats(self) -> dict:
        pool = self._thread_pool
        return pool.stats if pool is not None else {}

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def start(self, port: Optional[int] = None) -> Tuple[str, int]:
        """
        Bind and start accepting in the background.

        Args:
            port: Override config port (0 = any free port).

        Returns:
            The bound (host, port).

        Raises:
            BindError: If the listening socket cannot be bound.
            RuntimeError: If the server is already running.
        """
        with self._lock:
            if self._running:
                raise RuntimeError("Server is already running")

            if port is not None:
                self.config.port = port

            listener = SocketServer(self.config)
            listener.bind()  # BindError propagates, nothing else started yet

            pool = ThreadPool(
                min_workers=self.config.min_workers,
                max_workers=self.config.max_workers,
                queue_size=self.config.queue_size,
            )
            pool.start()

            self._socket_server = listener
            self._thread_pool = pool
            self._address = listener.address
            self._running = True
            self._stopped.clear()

            self._accept_thread = threading.Thread(
                target=self._serve,
                args=(listener,),
                name="Acceptor",
                daemon=True,
            )
            self._accept_thread.start()

        logger.info(f"Area server accepting on {self._address[0]}:{self._address[1]}")
        notify(self.observer, "server_started", self._address)
        return self._address

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """
        Start the server (blocking).

        Blocks until SIGINT/SIGTERM (or stop() from another thread).

        Args:
            host: Override config host.
            port: Override config port.

        Raises:
            BindError: If the listening socket cannot be bound.
        """
        if host:
            self.config.host = host

        self._setup_logging()
        self.start(port)
        self._print_startup_banner()

        listener = self._socket_server
        accept_thread = self._accept_thread
        listener.install_signal_handlers()

        # ─────────────────────────────────────────────────────────────────
        # MAIN LOOP (blocks here)
        # ─────────────────────────────────────────────────────────────────
        try:
            # Short joins so the main thread keeps running signal handlers
            while accept_thread.is_alive():
                accept_thread.join(timeout=0.5)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            listener.restore_signal_handlers()
            self.stop()

    def stop(self):
        """
        Stop the server. Idempotent and callable from any thread.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            listener = self._socket_server
            pool = self._thread_pool
            accept_thread = self._accept_thread

        logger.info("Shutting down server...")

        # 1. Stop accepting
        if listener is not None:
            listener.shutdown()

        # 2-3. Cancel and deregister live connections
        for conn in self._registry.clear():
            conn.cancel()
            notify(self.observer, "connection_closed", conn.id, "server stopped")

        if accept_thread is not None and accept_thread is not threading.current_thread():
            accept_thread.join(timeout=STOP_TIMEOUT)

        # 4. Workers return as soon as their cancelled connections unwind
        if pool is not None:
            pool.shutdown(wait=True, timeout=STOP_TIMEOUT)

        logger.info("Server stopped")
        notify(self.observer, "server_stopped")
        self._stopped.set()

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until the server has fully stopped; False on timeout."""
        return self._stopped.wait(timeout)

    def __enter__(self):
        if not self._running:
            self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    def _print_startup_banner(self):
        host, port = self.address
        delimiter = repr(self.config.frame_delimiter) if self.config.frame_delimiter else "per-read"
        print()
        print("╔══════════════════════════════════════════════════════════════╗")
        print(f"  Area server running on {host}:{port}")
        print(f"  Workers: {self.config.min_workers}-{self.config.max_workers} connections")
        print(f"  Delay: {self.config.per_rectangle_delay}s per rectangle")
        print(f"  Policy: {self.config.parse_policy}, framing: {delimiter}")
        print("  Press Ctrl+C to stop")
        print("╚══════════════════════════════════════════════════════════════╝")
        print()

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("areaserver").setLevel(level)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _serve(self, listener: SocketServer):
        """Accept loop body (runs on the Acceptor thread)."""
        try:
            listener.serve(self._on_accept, on_failure=self._on_listener_failure)
        except Exception as e:
            logger.exception(f"Accept loop crashed: {e}")
            self._on_listener_failure(e)

    def _on_listener_failure(self, error: BaseException):
        notify(self.observer, "server_error", error)
        self.stop()

    def _on_accept(self, conn: Connection):
        """
        Register a new connection and hand it to the thread pool.

        Called by SocketServer for each accepted socket. Never raises, so
        one bad connection cannot end the accept loop.
        """
        try:
            self._registry.insert(conn)
        except KeyError:
            logger.error(f"[{conn.id}] Duplicate connection id, dropping")
            conn.close()
            return

        notify(self.observer, "connection_opened", conn.id, conn.address)

        # stop() may have cleared the registry just before the insert
        if not self._running:
            self._reject(conn, "server stopped")
            return

        pool = self._thread_pool
        try:
            submitted = pool.submit(
                self._handler.handle,
                args=(conn,),
                timeout=self.config.timeout,
                on_skip=self._reject,
            )
        except RuntimeError:
            submitted = False  # Pool shutting down

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            self._reject(conn, "server overloaded")

    def _reject(self, conn: Connection, reason: str = "not served"):
        """Close a connection that never reached a handler."""
        conn.cancel()
        conn.close()
        self._handler.release(conn, reason)


def create_app(
    config: Optional[ServerConfig] = None,
    observer: Optional[ServerObserver] = None,
) -> AreaServer:
    """
    Create an area server application.

    Example:
        app = create_app(ServerConfig(port=3000, per_rectangle_delay=0.5))
        app.run()
    """
    return AreaServer(config, observer)
