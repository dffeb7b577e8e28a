"""
=============================================================================
AREA CLIENT
=============================================================================

Minimal blocking client for the area server, plus the ``areaclient`` CLI.

    $ areaclient 127.0.0.1 8080 2,3,4,5
    26,6,20

One connection carries any number of requests, one at a time: the server
answers a request before it reads the next one.

    ┌────────┐   "2,3,4,5"    ┌────────┐
    │ Client │ ─────────────► │ Server │
    │        │ ◄───────────── │        │   ~ per_rectangle_delay later
    └────────┘   "26,6,20"    └────────┘

=============================================================================
"""

import argparse
import logging
import socket
import sys
from typing import Iterable, List, Optional, Tuple

from .protocol.codec import encode_request, parse_response


logger = logging.getLogger(__name__)


class AreaClient:
    """
    Blocking TCP client.

    Usage:
        with AreaClient("127.0.0.1", 8080) as client:
            total, areas = client.request([(2, 3), (4, 5)])

    Args:
        host, port: Server address.
        timeout: Socket timeout in seconds; a batch of N rectangles takes
                 about one per-rectangle delay, not N of them.
        delimiter: Must match the server's frame_delimiter (None = per-read).
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = 30.0,
        delimiter: Optional[bytes] = None,
        buffer_size: int = 4096,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.delimiter = delimiter
        self.buffer_size = buffer_size

        self._socket: Optional[socket.socket] = None
        self._buffer = b""

    @property
    def is_connected(self) -> bool:
        return self._socket is not None

    def connect(self) -> "AreaClient":
        if self._socket is None:
            self._socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
            logger.debug(f"Connected to {self.host}:{self.port}")
        return self

    def request(self, rectangles: Iterable[Tuple[float, float]]) -> Tuple[float, List[float]]:
        """
        Send (width, height) pairs and return (total, areas).

        Raises:
            ConnectionError: If the server closed the connection.
            ParseError: If the response is not a valid area list.
        """
        return parse_response(self.request_raw(encode_request(rectangles)))

    def request_raw(self, payload: bytes) -> bytes:
        """
        Send one raw request frame and return the raw response frame.

        Raises:
            ValueError: If ``payload`` is empty in per-read mode, where
                nothing would reach the server.
        """
        if not payload and self.delimiter is None:
            raise ValueError("No rectangles selected")

        self.connect()

        if self.delimiter is not None:
            payload = payload + self.delimiter
        self._socket.sendall(payload)

        # Per-read: the whole response arrives in one read
        if self.delimiter is None:
            data = self._socket.recv(self.buffer_size)
            if not data:
                raise ConnectionError("Server closed the connection")
            return data

        while self.delimiter not in self._buffer:
            chunk = self._socket.recv(self.buffer_size)
            if not chunk:
                raise ConnectionError("Server closed the connection")
            self._buffer += chunk

        frame, _, self._buffer = self._buffer.partition(self.delimiter)
        return frame

    def close(self):
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
            self._buffer = b""

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def main(argv=None):
    """Send one request and print the response."""
    parser = argparse.ArgumentParser(
        prog="areaclient",
        description="Send rectangles to an area server",
    )
    parser.add_argument("host", help="Server host")
    parser.add_argument("port", type=int, help="Server port")
    parser.add_argument("payload", help="Request, e.g. 2,3,4,5")
    parser.add_argument("--timeout", type=float, default=30.0,
                        help="Socket timeout in seconds (default: 30)")
    parser.add_argument("--delimiter", default=None,
                        help="Frame delimiter, if the server uses one (e.g. '\\n')")
    args = parser.parse_args(argv)

    delimiter = None
    if args.delimiter:
        delimiter = args.delimiter.encode("utf-8").decode("unicode_escape").encode("utf-8")

    try:
        with AreaClient(args.host, args.port, timeout=args.timeout, delimiter=delimiter) as client:
            response = client.request_raw(args.payload.encode("utf-8"))
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(response.decode("utf-8", errors="replace"))


if __name__ == "__main__":
    main()
