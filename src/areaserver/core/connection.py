"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps one accepted client socket with a frame-oriented API:
read a request frame, send a response frame, close.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

TCP only guarantees that bytes arrive in order and intact. It does not
preserve the boundaries of the writes that produced them:

    Client sends:
        send("2,3")
        send("4,5")

    Server might receive:
        recv() → "2,34,5"       (coalesced)
        recv() → "2,"           (fragmented)
        recv() → "2,3"          (as sent)

=============================================================================
FRAMING MODES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  PER-READ (default, frame_delimiter=None)                           │
    │  ─────────────────────────────────────────────────────────────────  │
    │  One recv() of up to buffer_size bytes is one frame.                │
    │  This is what existing clients expect: they write one request and   │
    │  wait for the answer, so in practice one read == one request.       │
    ├─────────────────────────────────────────────────────────────────────┤
    │  DELIMITED (frame_delimiter=b"\\n")                                  │
    │  ─────────────────────────────────────────────────────────────────  │
    │  Bytes are buffered until the delimiter shows up. Extra bytes after │
    │  it stay in the buffer for the next frame. Responses are terminated │
    │  with the same delimiter. Robust against fragmentation/coalescing.  │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    CONNECTING ──► READY ──► RECEIVING ◄────► PROCESSING ──► WRITING ─┐
        │            │           │                                     │
        │            │           │        (response sent) ◄────────────┘
        │            ▼           ▼
        └──────────► CLOSING ◄───┘   (peer closed, I/O error, cancel)
                        │
                        ▼
                      CLOSED

=============================================================================
"""

import socket
import threading
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)

# close() discards at most this much unread input, for at most this long.
DRAIN_TIMEOUT = 0.2
DRAIN_LIMIT = 64 * 1024


class ConnectionState(Enum):
    """Connection lifecycle states."""
    CONNECTING = "connecting"    # Accepted, handler not running yet
    READY = "ready"              # Handler attached, about to read
    RECEIVING = "receiving"      # Waiting for a request frame
    PROCESSING = "processing"    # Frame parsed, batch computing
    WRITING = "writing"          # Sending the response
    CLOSING = "closing"          # Shutdown sequence in progress
    CLOSED = "closed"            # Socket released


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Unique connection identifier (registry key, log prefix).
        state: Current connection state.
        created_at: Timestamp when connection was accepted.
        last_activity: Timestamp of last read or write.
        frames_handled: Number of request frames read.
        cancel_event: Set by cancel(); aborts the in-flight batch.
        last_error: Most recent I/O error, for reporting.
    """

    # Required parameters
    socket: socket.socket
    address: tuple

    # Generated/default parameters
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.CONNECTING
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    frames_handled: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 1024
    timeout: Optional[float] = None            # None = block until data
    frame_delimiter: Optional[bytes] = None    # None = one read per frame
    max_frame_size: int = 1024 * 1024

    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    last_error: Optional[BaseException] = field(default=None, repr=False)

    _buffer: bytes = field(default=b"", repr=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    @property
    def idle_time(self) -> float:
        return time.time() - self.last_activity

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def mark_ready(self):
        """Handshake done: a handler is now driving this connection."""
        if self.state == ConnectionState.CONNECTING:
            self.state = ConnectionState.READY

    # =========================================================================
    # READING
    # =========================================================================

    def read_frame(self) -> Optional[bytes]:
        """
        Read one request frame.

        Returns:
            Frame bytes (without delimiter), or None if the peer closed
            the connection or it was cancelled.

        Raises:
            TimeoutError: If a timeout is configured and the peer is idle.
            ValueError: If a delimited frame grows past max_frame_size.
            OSError: On any other socket failure.
        """
        self.state = ConnectionState.RECEIVING
        self.last_activity = time.time()

        # ─────────────────────────────────────────────────────────────────
        # PER-READ FRAMING
        # ─────────────────────────────────────────────────────────────────
        if self.frame_delimiter is None:
            chunk = self._recv()
            if not chunk:
                return None
            self.frames_handled += 1
            return chunk

        # ─────────────────────────────────────────────────────────────────
        # DELIMITED FRAMING: buffer until the delimiter appears
        # ─────────────────────────────────────────────────────────────────
        # Pipelined bytes after the delimiter don't count toward the limit;
        # the tail may hold a partial delimiter
        limit = self.max_frame_size + len(self.frame_delimiter) - 1
        while self.frame_delimiter not in self._buffer:
            if len(self._buffer) > limit:
                self._buffer = b""
                raise ValueError(f"Frame too large: exceeds {self.max_frame_size} bytes")

            chunk = self._recv()
            if not chunk:
                if self._buffer:
                    logger.debug(
                        f"[{self.id}] Discarding {len(self._buffer)} bytes of incomplete frame"
                    )
                    self._buffer = b""
                return None

            self._buffer += chunk

        frame, _, rest = self._buffer.partition(self.frame_delimiter)
        self._buffer = rest
        if len(frame) > self.max_frame_size:
            raise ValueError(f"Frame too large: exceeds {self.max_frame_size} bytes")

        self.frames_handled += 1
        return frame

    def _recv(self) -> bytes:
        """recv() that maps a vanished or cancelled peer to b""."""
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError):
            return b""
        except socket.timeout:
            raise TimeoutError(f"No data from {self.client_ip}:{self.client_port} "
                               f"within {self.timeout}s")
        except OSError:
            if self.is_cancelled:
                return b""
            raise

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send a response frame.

        Returns:
            True if sent, False if the connection is gone (see last_error).
        """
        if self.is_cancelled:
            self.last_error = ConnectionAbortedError("connection cancelled")
            return False

        self.state = ConnectionState.WRITING
        if self.frame_delimiter is not None:
            data = data + self.frame_delimiter

        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            self.last_error = e
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CANCEL / CLOSE
    # =========================================================================

    def cancel(self):
        """
        Abort this connection from another thread.

        Sets cancel_event (an in-flight batch gives up) and shuts the socket
        down in both directions so a blocked recv() returns immediately.
        The owning handler then runs close().
        """
        self.cancel_event.set()
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already disconnected

    def close(self):
        """
        Close the connection. Safe to call more than once, from any thread.

        1. shutdown(SHUT_WR): send FIN so the client sees end-of-stream
        2. drain briefly so unread data doesn't trigger a RST
        3. close(): release the descriptor
        """
        with self._close_lock:
            if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                return
            self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        if not self.is_cancelled:
            self._drain()

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.frames_handled} frames")

    def _drain(self):
        """Discard unread input until EOF, DRAIN_TIMEOUT or DRAIN_LIMIT bytes."""
        deadline = time.monotonic() + DRAIN_TIMEOUT
        drained = 0
        try:
            while drained < DRAIN_LIMIT:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                chunk = self.socket.recv(4096)
                if not chunk:
                    break
                drained += len(chunk)
        except OSError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
