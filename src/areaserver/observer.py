"""
=============================================================================
SERVER EVENTS AND OBSERVERS
=============================================================================

The core never talks to a UI directly. Instead it reports what happens
through a small observer interface, and whoever is interested (a log, a
dashboard, a test) subscribes.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         Event Flow                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   AreaServer ───┐                                                    │
    │   Handler    ───┼──► ServerObserver ──► LoggingObserver  (log file)  │
    │   AreaEngine ───┘         │                                          │
    │                           ├──────────► QueueObserver    (UI thread)  │
    │                           │                                          │
    │                           └──────────► ObserverGroup    (fan-out)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

THREADING:
──────────
Observer methods are called from the accept thread, from pool workers and
from per-rectangle workers, often at the same time. Implementations must
be thread-safe and must return quickly: the core never waits on a UI.

=============================================================================
"""

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple


logger = logging.getLogger(__name__)


def notify(observer: "ServerObserver", method: str, *args, **kwargs) -> bool:
    """
    Call one observer hook, logging instead of raising if it fails.

    Returns:
        True if the hook returned normally.
    """
    try:
        getattr(observer, method)(*args, **kwargs)
        return True
    except Exception as e:
        logger.exception(f"Observer {type(observer).__name__}.{method} failed: {e}")
        return False


class EventKind(Enum):
    """Kinds of event a QueueObserver records."""
    LOG = "log"
    CONNECTION_OPENED = "connection_opened"
    CONNECTION_CLOSED = "connection_closed"
    BATCH_STARTED = "batch_started"
    BATCH_FINISHED = "batch_finished"
    RESULT_UPDATED = "result_updated"
    SEND_FAILED = "send_failed"
    SERVER_STARTED = "server_started"
    SERVER_STOPPED = "server_stopped"
    SERVER_ERROR = "server_error"


@dataclass
class ObserverEvent:
    """A single recorded event."""
    kind: EventKind
    connection_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class ServerObserver:
    """
    Base observer. Every hook is a no-op; override the ones you need.

    ``batch_started``/``batch_finished`` fire once per rectangle: ``index``
    is the rectangle's position in the batch being computed.
    """

    def log(self, message: str, level: int = logging.INFO,
            connection_id: Optional[str] = None) -> None:
        pass

    def connection_opened(self, connection_id: str, address: Tuple[str, int]) -> None:
        pass

    def connection_closed(self, connection_id: str, reason: Optional[str] = None) -> None:
        pass

    def batch_started(self, connection_id: Optional[str], index: int) -> None:
        pass

    def batch_finished(self, connection_id: Optional[str], index: int) -> None:
        pass

    def result_updated(self, connection_id: Optional[str], result) -> None:
        pass

    def send_failed(self, connection_id: str, error: BaseException) -> None:
        pass

    def server_started(self, address: Tuple[str, int]) -> None:
        pass

    def server_stopped(self) -> None:
        pass

    def server_error(self, error: BaseException) -> None:
        pass


class LoggingObserver(ServerObserver):
    """
    Writes every event to the ``areaserver.events`` logger.

    Two formats, same as any access log:

        text:  [a1b2c3d4] connection opened from 127.0.0.1:50312
        json:  {"event": "connection_opened", "connection_id": "a1b2c3d4", ...}
    """

    def __init__(self, log_format: str = "text", logger_name: str = "areaserver.events"):
        self.log_format = log_format
        self._logger = logging.getLogger(logger_name)

    def _emit(self, level: int, kind: EventKind, connection_id: Optional[str],
              text: str, **data) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if self.log_format == "json":
            entry = {"event": kind.value, "connection_id": connection_id, **data}
            self._logger.log(level, json.dumps(entry, default=str))
        elif connection_id:
            self._logger.log(level, f"[{connection_id}] {text}")
        else:
            self._logger.log(level, text)

    def log(self, message, level=logging.INFO, connection_id=None):
        self._emit(level, EventKind.LOG, connection_id, message, message=message)

    def connection_opened(self, connection_id, address):
        self._emit(
            logging.INFO, EventKind.CONNECTION_OPENED, connection_id,
            f"connection opened from {address[0]}:{address[1]}",
            address=f"{address[0]}:{address[1]}",
        )

    def connection_closed(self, connection_id, reason=None):
        self._emit(
            logging.INFO, EventKind.CONNECTION_CLOSED, connection_id,
            f"connection closed ({reason or 'peer closed'})", reason=reason,
        )

    def batch_started(self, connection_id, index):
        self._emit(logging.DEBUG, EventKind.BATCH_STARTED, connection_id,
                   f"rectangle {index} started", index=index)

    def batch_finished(self, connection_id, index):
        self._emit(logging.DEBUG, EventKind.BATCH_FINISHED, connection_id,
                   f"rectangle {index} finished", index=index)

    def result_updated(self, connection_id, result):
        areas = list(result.areas)
        self._emit(
            logging.INFO, EventKind.RESULT_UPDATED, connection_id,
            f"total area {result.total:g} from {len(areas)} rectangles {areas}",
            total=result.total, areas=areas,
        )

    def send_failed(self, connection_id, error):
        self._emit(logging.WARNING, EventKind.SEND_FAILED, connection_id,
                   f"send failed: {error}", error=str(error))

    def server_started(self, address):
        self._emit(logging.INFO, EventKind.SERVER_STARTED, None,
                   f"server listening on {address[0]}:{address[1]}",
                   address=f"{address[0]}:{address[1]}")

    def server_stopped(self):
        self._emit(logging.INFO, EventKind.SERVER_STOPPED, None, "server stopped")

    def server_error(self, error):
        self._emit(logging.ERROR, EventKind.SERVER_ERROR, None,
                   f"server error: {error}", error=str(error))


class QueueObserver(ServerObserver):
    """
    Records events on a thread-safe queue for another thread to consume.

    Puts never block: if ``maxsize`` is reached the event is dropped and
    counted in ``dropped_events``, so a slow consumer can't stall the
    server.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue[ObserverEvent]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self.dropped_events = 0

    def _put(self, kind: EventKind, connection_id: Optional[str] = None, **data) -> None:
        try:
            self._queue.put_nowait(ObserverEvent(kind, connection_id, data))
        except queue.Full:
            with self._lock:
                self.dropped_events += 1

    def log(self, message, level=logging.INFO, connection_id=None):
        self._put(EventKind.LOG, connection_id, message=message, level=level)

    def connection_opened(self, connection_id, address):
        self._put(EventKind.CONNECTION_OPENED, connection_id, address=address)

    def connection_closed(self, connection_id, reason=None):
        self._put(EventKind.CONNECTION_CLOSED, connection_id, reason=reason)

    def batch_started(self, connection_id, index):
        self._put(EventKind.BATCH_STARTED, connection_id, index=index)

    def batch_finished(self, connection_id, index):
        self._put(EventKind.BATCH_FINISHED, connection_id, index=index)

    def result_updated(self, connection_id, result):
        self._put(EventKind.RESULT_UPDATED, connection_id, result=result)

    def send_failed(self, connection_id, error):
        self._put(EventKind.SEND_FAILED, connection_id, error=error)

    def server_started(self, address):
        self._put(EventKind.SERVER_STARTED, address=address)

    def server_stopped(self):
        self._put(EventKind.SERVER_STOPPED)

    def server_error(self, error):
        self._put(EventKind.SERVER_ERROR, error=error)

    # =========================================================================
    # CONSUMER SIDE
    # =========================================================================

    def get(self, timeout: Optional[float] = None) -> Optional[ObserverEvent]:
        """Next event, or None if nothing arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list:
        """Return every event currently queued."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def wait_for(
        self,
        kind: EventKind,
        timeout: float = 5.0,
        predicate: Optional[Callable[[ObserverEvent], bool]] = None,
    ) -> Optional[ObserverEvent]:
        """
        Consume events until one of ``kind`` (matching ``predicate``) shows up.

        Events consumed along the way are discarded. Returns None on timeout.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            event = self.get(timeout=remaining)
            if event is None:
                return None
            if event.kind is kind and (predicate is None or predicate(event)):
                return event


class ObserverGroup(ServerObserver):
    """
    Fans every event out to several observers.

    A failing observer is logged and skipped; it never breaks the others
    or the server.
    """

    def __init__(self, *observers: ServerObserver):
        self._observers = list(observers)

    def add(self, observer: ServerObserver) -> "ObserverGroup":
        self._observers.append(observer)
        return self

    def __len__(self) -> int:
        return len(self._observers)

    def _dispatch(self, method: str, *args, **kwargs) -> None:
        for observer in self._observers:
            notify(observer, method, *args, **kwargs)

    def log(self, message, level=logging.INFO, connection_id=None):
        self._dispatch("log", message, level=level, connection_id=connection_id)

    def connection_opened(self, connection_id, address):
        self._dispatch("connection_opened", connection_id, address)

    def connection_closed(self, connection_id, reason=None):
        self._dispatch("connection_closed", connection_id, reason=reason)

    def batch_started(self, connection_id, index):
        self._dispatch("batch_started", connection_id, index)

    def batch_finished(self, connection_id, index):
        self._dispatch("batch_finished", connection_id, index)

    def result_updated(self, connection_id, result):
        self._dispatch("result_updated", connection_id, result)

    def send_failed(self, connection_id, error):
        self._dispatch("send_failed", connection_id, error)

    def server_started(self, address):
        self._dispatch("server_started", address)

    def server_stopped(self):
        self._dispatch("server_stopped")

    def server_error(self, error):
        self._dispatch("server_error", error)
