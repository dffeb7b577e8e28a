"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

The server's authoritative set of open connections.

Two different threads touch it:

    accept thread   ──► insert(conn)      on accept
    pool worker     ──► remove(conn.id)   when its connection ends
    stop()          ──► snapshot()/clear() on shutdown

Every operation takes the same lock, so the visible count is always
consistent. ``remove`` reports whether the id was still present. Only
the caller that actually removed a connection emits its close event, so
each connection is reported closed exactly once.

=============================================================================
"""

import threading
from typing import Dict, List, Optional

from .connection import Connection


class ConnectionRegistry:
    """Thread-safe map of connection id → Connection."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def insert(self, conn: Connection) -> None:
        with self._lock:
            if conn.id in self._connections:
                raise KeyError(f"Connection {conn.id} already registered")
            self._connections[conn.id] = conn

    def remove(self, connection_id: str) -> bool:
        """Remove a connection; True if this call removed it."""
        with self._lock:
            return self._connections.pop(connection_id, None) is not None

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(connection_id)

    def snapshot(self) -> List[Connection]:
        """Copy of the live connections, safe to iterate without the lock."""
        with self._lock:
            return list(self._connections.values())

    def clear(self) -> List[Connection]:
        """Remove everything and return what was there."""
        with self._lock:
            removed = list(self._connections.values())
            self._connections.clear()
            return removed

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
