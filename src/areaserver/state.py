"""
Last-result snapshot exposed to the UI collaborator.

Written by connection handlers after each completed request and read by
whoever displays it, from any thread. One lock guards the result; the
live connection count comes from the registry under its own lock.
"""

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .engine import BatchResult

if TYPE_CHECKING:
    from .core.registry import ConnectionRegistry


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable copy of ServerState at one instant."""
    last_result: Optional[BatchResult]
    last_connection_id: Optional[str]
    requests_completed: int
    updated_at: Optional[float]
    connection_count: int = 0

    @property
    def total_area(self) -> float:
        return self.last_result.total if self.last_result is not None else 0.0

    @property
    def areas(self) -> list:
        return self.last_result.areas if self.last_result is not None else []


class ServerState:
    """Most recent batch result, a request counter and the live connection count."""

    def __init__(self, registry: Optional["ConnectionRegistry"] = None):
        self._registry = registry
        self._lock = threading.Lock()
        self._last_result: Optional[BatchResult] = None
        self._last_connection_id: Optional[str] = None
        self._requests_completed = 0
        self._updated_at: Optional[float] = None

    def record_result(self, result: BatchResult, connection_id: Optional[str] = None) -> None:
        with self._lock:
            self._last_result = result
            self._last_connection_id = connection_id
            self._requests_completed += 1
            self._updated_at = time.time()

    def snapshot(self) -> StateSnapshot:
        connection_count = len(self._registry) if self._registry is not None else 0
        with self._lock:
            return StateSnapshot(
                last_result=self._last_result,
                last_connection_id=self._last_connection_id,
                requests_completed=self._requests_completed,
                updated_at=self._updated_at,
                connection_count=connection_count,
            )
