"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking and concurrency plumbing under AreaServer.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Creates the listening socket, maps bind failures to BindError    │
    │  • Runs the accept() loop                                           │
    │  • Wraps each client socket in a Connection                         │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Hands off new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                   CONNECTION REGISTRY + THREAD POOL                  │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Registry: id → Connection, one lock, exactly-once removal        │
    │  • Pool: one worker per live connection, bounded by max_workers     │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ Worker runs the receive loop
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                   CONNECTION + CONNECTION HANDLER                    │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Connection: framing, send, cancel, close                         │
    │  • Handler: read → parse → compute → respond, until closed          │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .handler import ConnectionHandler
from .registry import ConnectionRegistry
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",        # TCP listener - accepts connections
    "Connection",          # Wrapper for client socket - framing and I/O
    "ConnectionState",     # Enum for connection lifecycle states
    "ConnectionHandler",   # Per-connection receive loop
    "ConnectionRegistry",  # Live connections by id
    "ThreadPool",          # Worker threads that drive connections
]
