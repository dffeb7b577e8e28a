"""
=============================================================================
CONNECTION HANDLER
=============================================================================

The per-connection receive loop. Runs on a pool worker, one connection at
a time, until the connection ends.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        handle(conn)                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   mark READY                                                         │
    │     │                                                                │
    │     ▼                                                                │
    │   ┌──► read_frame() ── None ──────────────────────────► close ──┐   │
    │   │      │                                                       │   │
    │   │      ▼                                                       │   │
    │   │   parse_request()  ── ParseError ─► empty batch (logged)     │   │
    │   │      │                                                       │   │
    │   │      ▼                                                       │   │
    │   │   engine.compute_batch() ── OperationCancelled ─► close ─────┤   │
    │   │      │                                                       │   │
    │   │      ▼                                                       │   │
    │   │   state.record_result() + result_updated event               │   │
    │   │      │                                                       │   │
    │   │      ▼                                                       │   │
    │   └── send_response() ── failed ─► send_failed event ─► close ───┤   │
    │                                                                  ▼   │
    │                       registry.remove() ─► connection_closed (once)  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The next frame is not read until the current response is written, so
requests on one connection are strictly sequential.

=============================================================================
"""

import logging
from typing import Optional

from ..engine import AreaEngine
from ..errors import OperationCancelled, ParseError, SendFailed
from ..observer import ServerObserver, notify
from ..protocol.codec import ParsedRequest, ParsePolicy, format_response, parse_request
from ..state import ServerState
from .connection import Connection, ConnectionState
from .registry import ConnectionRegistry


logger = logging.getLogger(__name__)


class ConnectionHandler:
    """
    Drives connections through receive → compute → respond.

    One instance is shared by every pool worker; all per-connection state
    lives on the Connection, so ``handle`` is safe to run concurrently.
    """

    def __init__(
        self,
        engine: AreaEngine,
        registry: ConnectionRegistry,
        state: ServerState,
        observer: Optional[ServerObserver] = None,
        policy: ParsePolicy = ParsePolicy.SKIP_INVALID,
    ):
        self.engine = engine
        self.registry = registry
        self.state = state
        self.observer = observer if observer is not None else ServerObserver()
        self.policy = policy

    def handle(self, conn: Connection):
        """Run the receive loop for one connection until it closes."""
        reason = "peer closed"
        conn.mark_ready()

        try:
            while not conn.is_cancelled:
                raw = conn.read_frame()
                if raw is None:
                    if conn.is_cancelled:
                        reason = "cancelled"
                    break

                stop_reason = self._process_frame(conn, raw)
                if stop_reason is not None:
                    reason = stop_reason
                    break
            else:
                reason = "cancelled"

        except TimeoutError as e:
            reason = "idle timeout"
            self._log(str(e), logging.INFO, conn.id)

        except ValueError as e:
            # Oversized delimited frame
            reason = f"protocol error: {e}"
            self._log(reason, logging.WARNING, conn.id)

        except OSError as e:
            reason = f"I/O error: {e}"
            self._log(reason, logging.ERROR, conn.id)

        except Exception as e:
            reason = f"internal error: {e}"
            logger.exception(f"[{conn.id}] Handler failed: {e}")
            self._log(reason, logging.ERROR, conn.id)

        finally:
            conn.close()
            self.release(conn, reason)

    def _log(self, message: str, level: int, connection_id: str):
        notify(self.observer, "log", message, level=level, connection_id=connection_id)

    def release(self, conn: Connection, reason: Optional[str] = None):
        """
        Deregister a finished connection and report it.

        Only the caller that actually removes the id emits the event, so a
        connection already cleared by stop() is not reported twice.
        """
        if self.registry.remove(conn.id):
            notify(self.observer, "connection_closed", conn.id, reason)

    def _process_frame(self, conn: Connection, raw: bytes) -> Optional[str]:
        """
        Handle one request frame.

        Returns:
            None to keep reading, or the reason the connection must close.
        """
        conn.state = ConnectionState.PROCESSING

        # ─────────────────────────────────────────────────────────────────
        # PARSE
        # ─────────────────────────────────────────────────────────────────
        try:
            parsed = parse_request(raw, self.policy)
        except ParseError as e:
            self._log(
                f"Rejected request ({e.kind.value}): {e}", logging.WARNING, conn.id
            )
            parsed = ParsedRequest()

        if parsed.dropped:
            self._log(
                f"Dropped {parsed.dropped} invalid pair(s)", logging.WARNING, conn.id
            )

        self._log(
            f"Received request with {len(parsed)} rectangle(s)", logging.INFO, conn.id
        )

        # ─────────────────────────────────────────────────────────────────
        # COMPUTE (blocks on the batch's join barrier)
        # ─────────────────────────────────────────────────────────────────
        try:
            result = self.engine.compute_batch(
                parsed.rectangles,
                cancel_event=conn.cancel_event,
                connection_id=conn.id,
            )
        except OperationCancelled as e:
            self._log(f"Batch abandoned: {e}", logging.INFO, conn.id)
            return "cancelled"

        self.state.record_result(result, conn.id)
        notify(self.observer, "result_updated", conn.id, result)

        # ─────────────────────────────────────────────────────────────────
        # RESPOND
        # ─────────────────────────────────────────────────────────────────
        payload = format_response(result.total, result.areas)
        if not conn.send_response(payload):
            notify(self.observer, "send_failed", conn.id, SendFailed(conn.id, conn.last_error))
            return "send failed"

        logger.debug(f"[{conn.id}] Sent {payload!r}")
        return None
