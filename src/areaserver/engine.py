"""
=============================================================================
AREA ENGINE
=============================================================================

Computes the areas of a batch of rectangles, one thread per rectangle,
each paying an artificial processing delay.

=============================================================================
FAN-OUT / JOIN
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     compute_batch([r0, r1, r2])                      │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   caller ──┬──► RectangleWorker 0 ── sleep ── slots[0] = 6   ──┐    │
    │            ├──► RectangleWorker 1 ── sleep ───── slots[1] = 20 ─┤    │
    │            └──► RectangleWorker 2 ─ sleep ─ slots[2] = 1 ───────┤    │
    │                                                                 │    │
    │   caller waits on the join barrier ◄─────────── last one done ─┘    │
    │       │                                                              │
    │       └──► total = slots[0] + slots[1] + slots[2]   (input order)   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Workers finish in any order, but each one owns exactly one slot, indexed
by its input position. No shared list is appended to, so no lock is
needed for results and the output order is the input order.

=============================================================================
CANCELLATION
=============================================================================

The caller may pass a ``cancel_event`` and/or a ``timeout``. While waiting
on the barrier the caller polls both. If either fires, the batch's abort
event is set. Sleeping workers wake up, see it and leave their slot
empty. The caller gets OperationCancelled, never a partial result.

Each batch has its own workers, slots and abort event, so cancelling one
connection's batch has no effect on anyone else's.

=============================================================================
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .errors import OperationCancelled
from .observer import ServerObserver, notify
from .protocol.codec import Rectangle, RectangleResult


logger = logging.getLogger(__name__)

# How often a waiting caller re-checks its cancel event and deadline.
POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class BatchResult:
    """Ordered results of one batch plus their total."""
    total: float = 0.0
    results: Tuple[RectangleResult, ...] = ()

    @property
    def areas(self) -> List[float]:
        return [r.area for r in self.results]

    def __len__(self) -> int:
        return len(self.results)


class _BatchJob:
    """
    Shared state for one compute_batch() call.

    ``slots[i]`` is written only by worker i. ``_remaining`` is the
    countdown for the join barrier and is the only field under a lock.
    """

    def __init__(self, size: int, connection_id: Optional[str], observer: ServerObserver):
        self.slots: List[Optional[RectangleResult]] = [None] * size
        self.connection_id = connection_id
        self.observer = observer
        self.abort = threading.Event()
        self.done = threading.Event()
        self._remaining = size
        self._lock = threading.Lock()

    def count_down(self) -> None:
        with self._lock:
            self._remaining -= 1
            if self._remaining == 0:
                self.done.set()


class RectangleWorker(threading.Thread):
    """
    Computes one rectangle's area after the configured delay.

    Lifecycle:
        1. report batch_started(index)
        2. sleep ``delay`` on the abort event (wakes early on cancel)
        3. write slots[index], report batch_finished(index)
        4. count down the join barrier (always, even when aborted)
    """

    def __init__(self, job: _BatchJob, index: int, rect: Rectangle, delay: float):
        super().__init__(name=f"Rect-{index}", daemon=True)
        self.job = job
        self.index = index
        self.rect = rect
        self.delay = delay

    def run(self):
        job = self.job
        try:
            notify(job.observer, "batch_started", job.connection_id, self.index)

            # Event.wait returns True only if abort was set while sleeping
            if job.abort.wait(self.delay):
                logger.debug(f"Rectangle {self.index} abandoned")
                return

            job.slots[self.index] = RectangleResult.of(self.rect)
            notify(job.observer, "batch_finished", job.connection_id, self.index)
        except Exception as e:
            # Leaves the slot empty; the caller treats that as a failed batch
            logger.exception(f"Rectangle worker {self.index} failed: {e}")
        finally:
            job.count_down()


class AreaEngine:
    """
    Concurrent area calculator.

    Usage:
        engine = AreaEngine(delay=2.0)
        result = engine.compute_batch(parsed.rectangles)
        result.total     # 26.0
        result.areas     # [6.0, 20.0]

    Args:
        delay: Seconds each rectangle "takes" to compute.
        jitter: Extra random delay in [0, jitter) per rectangle. Used to
                shake up completion order in tests.
        observer: Receives batch_started/batch_finished per rectangle.
    """

    def __init__(
        self,
        delay: float = 2.0,
        jitter: float = 0.0,
        observer: Optional[ServerObserver] = None,
    ):
        self.delay = delay
        self.jitter = jitter
        self.observer = observer if observer is not None else ServerObserver()

    def _delay_for(self, base: float) -> float:
        if self.jitter > 0:
            return base + random.uniform(0, self.jitter)
        return base

    def compute_batch(
        self,
        batch: Sequence[Rectangle],
        delay: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        connection_id: Optional[str] = None,
    ) -> BatchResult:
        """
        Compute every rectangle concurrently and aggregate in input order.

        Args:
            batch: Rectangles to compute.
            delay: Override the engine's per-rectangle delay for this call.
            cancel_event: Set by the caller to abandon the batch.
            timeout: Give up (as if cancelled) after this many seconds.
            connection_id: Tag passed through to observer events.

        Returns:
            BatchResult with ``results[i]`` matching ``batch[i]``.

        Raises:
            OperationCancelled: If cancelled or timed out before all
                rectangles finished.
            RuntimeError: If a worker thread cannot be started.
        """
        if not batch:
            return BatchResult()

        base_delay = self.delay if delay is None else delay
        job = _BatchJob(len(batch), connection_id, self.observer)

        # ─────────────────────────────────────────────────────────────────
        # FAN OUT: start every worker before waiting on any of them
        # ─────────────────────────────────────────────────────────────────
        workers = [
            RectangleWorker(job, index, rect, self._delay_for(base_delay))
            for index, rect in enumerate(batch)
        ]
        try:
            for worker in workers:
                worker.start()
        except RuntimeError:
            # Workers already running see the abort and count down unused
            job.abort.set()
            raise

        # ─────────────────────────────────────────────────────────────────
        # JOIN BARRIER
        # ─────────────────────────────────────────────────────────────────
        deadline = time.monotonic() + timeout if timeout is not None else None
        while not job.done.wait(POLL_INTERVAL):
            if cancel_event is not None and cancel_event.is_set():
                job.abort.set()
                raise OperationCancelled(f"Batch of {len(batch)} cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                job.abort.set()
                raise OperationCancelled(
                    f"Batch of {len(batch)} timed out after {timeout}s"
                )

        # A cancel that raced with the last worker still wins
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(f"Batch of {len(batch)} cancelled")

        if any(slot is None for slot in job.slots):
            raise OperationCancelled(f"Batch of {len(batch)} did not complete")

        # ─────────────────────────────────────────────────────────────────
        # AGGREGATE: fixed input order keeps the total reproducible
        # ─────────────────────────────────────────────────────────────────
        results = tuple(job.slots)
        total = 0.0
        for result in results:
            total += result.area

        return BatchResult(total=total, results=results)
