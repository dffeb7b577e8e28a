"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the server can see falls into one of four buckets:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  ERROR               SCOPE          RECOVERY                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │  ParseError          one request    reply "0", keep connection open │
    │  OSError / SendFailed one connection close that connection only      │
    │  OperationCancelled  one batch      abandon work, no partial result │
    │  BindError           whole server   raised from start(), not retried│
    └─────────────────────────────────────────────────────────────────────┘

Each exception carries a ``kind`` enum so callers (and tests) can react to
the precise cause without string matching.

=============================================================================
"""

from enum import Enum
from typing import Optional


class ParseErrorKind(Enum):
    """Why a request frame could not be turned into a batch."""
    ENCODING = "encoding"                # Not valid UTF-8
    ODD_TOKEN_COUNT = "odd_token_count"  # Dimensions must come in pairs
    NOT_A_NUMBER = "not_a_number"        # Token is not a finite decimal


class ParseError(ValueError):
    """
    Raised when a frame cannot be parsed.

    Per-request only: the connection handler answers with the degenerate
    response and keeps reading.
    """

    def __init__(self, message: str, kind: ParseErrorKind):
        super().__init__(message)
        self.kind = kind


class BindErrorKind(Enum):
    """Why the listener could not bind its address."""
    PORT_IN_USE = "port_in_use"
    PERMISSION_DENIED = "permission_denied"
    OTHER = "other"


class BindError(OSError):
    """Raised by the listener when bind()/listen() fails."""

    def __init__(
        self,
        message: str,
        kind: BindErrorKind,
        host: str = "",
        port: int = 0,
        errno_value: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.host = host
        self.port = port
        self.errno_value = errno_value


class OperationCancelled(Exception):
    """
    A pending batch was cancelled (or timed out) by its caller.

    Not a failure of the engine. No partial result is ever returned.
    """


class SendFailed(OSError):
    """A computed response could not be written back to the client."""

    def __init__(self, connection_id: str, cause: Optional[BaseException] = None):
        message = f"send to connection {connection_id} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.connection_id = connection_id
        self.cause = cause
