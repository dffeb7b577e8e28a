"""
=============================================================================
THREAD POOL
=============================================================================

Worker threads that drive connection receive loops.

Each accepted connection becomes one task. A worker picks it up and runs
the whole receive → compute → respond loop until the connection closes,
then goes back to the queue for the next one. So ``max_workers`` is the
number of connections served in parallel; further connections wait in
the queue (up to ``queue_size``) and are rejected beyond that.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Thread Pool                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   accept thread                                                      │
    │        │ submit(handler.handle, (conn,))                             │
    │        ▼                                                             │
    │   ┌──────────────────────────┐                                       │
    │   │  Task Queue              │  [conn3] [conn4] ...                  │
    │   └─────────┬────────────────┘                                       │
    │             │ get()                                                  │
    │     ┌───────┼────────┬─────────────┐                                 │
    │     ▼       ▼        ▼             ▼                                 │
    │  Worker-0 Worker-1 Worker-2 ... Worker-N   (min..max, grows on load) │
    │  (conn1)  (conn2)   idle          idle                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Per-rectangle computations do NOT run here: the area engine starts its
own short-lived threads so that a batch is never starved by connections
holding pool workers.

POISON PILL SHUTDOWN:
─────────────────────
shutdown() puts one None per worker on the queue. A worker that gets None
leaves its loop.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


@dataclass
class Task:
    """
    One queued connection.

    Attributes:
        func: Callable run by a worker, normally ConnectionHandler.handle.
        args: Positional arguments for ``func``.
        timeout: Skip the task if it has waited longer than this.
        on_skip: Called with ``args`` instead of ``func`` when skipped, so
                 the owner can release the connection.
        submitted_at: Time the task was queued.
    """
    func: Callable[..., Any]
    args: tuple = ()
    timeout: Optional[float] = None
    on_skip: Optional[Callable[..., Any]] = None
    submitted_at: float = field(default_factory=time.time)

    @property
    def is_stale(self) -> bool:
        return bool(self.timeout) and time.time() - self.submitted_at > self.timeout


class Worker(threading.Thread):
    """Runs tasks off the shared queue until it draws a None pill."""

    def __init__(self, task_queue: queue.Queue, worker_id: int, idle_timeout: float = 1.0):
        super().__init__(name=f"Worker-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout
        self._shutdown = threading.Event()

        self.tasks_completed = 0
        self.tasks_skipped = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            try:
                if task is None:
                    break
                self._execute(task)
            finally:
                self.task_queue.task_done()

        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute(self, task: Task):
        try:
            if task.is_stale:
                logger.warning(
                    f"Connection waited {time.time() - task.submitted_at:.2f}s for a "
                    f"worker (limit {task.timeout}s), skipping"
                )
                self.tasks_skipped += 1
                if task.on_skip is not None:
                    task.on_skip(*task.args)
                return

            task.func(*task.args)
            self.tasks_completed += 1

        except Exception as e:
            logger.exception(f"Worker {self.worker_id} task failed: {e}")
            self.tasks_failed += 1

    def shutdown(self):
        self._shutdown.set()


class ThreadPool:
    """
    Bounded pool of connection workers.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=16)
        pool.start()
        pool.submit(handler.handle, args=(conn,), on_skip=reject)
        pool.shutdown(wait=True, timeout=5.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        queue_size: int = 100,
        idle_timeout: float = 1.0
    ):
        """
        Args:
            min_workers: Workers created at start() and kept running.
            max_workers: Upper bound; more workers are added as tasks back up.
            queue_size: Maximum waiting connections before submit() rejects.
            idle_timeout: How often idle workers re-check for shutdown.
        """
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.idle_timeout = idle_timeout

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: list = []
        self._lock = threading.Lock()  # Protects _workers
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown

    def start(self):
        """Start ``min_workers`` threads. No-op if already started."""
        if self._started:
            return

        logger.info(f"Starting thread pool with {self.min_workers} workers")
        self._shutdown = False
        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()
        self._started = True

    def _add_worker(self):
        """Caller holds self._lock."""
        worker = Worker(self._task_queue, self._next_worker_id, self.idle_timeout)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        timeout: Optional[float] = None,
        on_skip: Optional[Callable[..., Any]] = None,
    ) -> bool:
        """
        Queue a task without blocking.

        Returns:
            True if queued, False if the queue is full.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")
        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        try:
            self._task_queue.put_nowait(Task(func, args, timeout, on_skip))
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        """
        Add a worker while unfinished tasks outnumber workers.

        A connection task holds its worker until the client leaves, so the
        pool grows per connection rather than per burst. ``unfinished_tasks``
        counts queued plus running tasks.
        """
        with self._lock:
            in_flight = self._task_queue.unfinished_tasks
            if in_flight > len(self._workers) and len(self._workers) < self.max_workers:
                logger.debug(
                    f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop the pool. Idempotent.

        Args:
            wait: Wait for running and queued tasks to finish first.
            timeout: Upper bound on that wait.
        """
        if not self._started:
            return

        logger.info("Shutting down thread pool...")
        self._shutdown = True

        if wait:
            deadline = time.time() + timeout if timeout else None
            while self._task_queue.unfinished_tasks:
                if deadline is not None and time.time() > deadline:
                    logger.warning("Shutdown timeout, forcing stop")
                    break
                time.sleep(0.05)

        with self._lock:
            workers = list(self._workers)
            self._workers.clear()

        for _ in workers:
            try:
                self._task_queue.put_nowait(None)
            except queue.Full:
                pass  # Workers still exit via their shutdown flag

        for worker in workers:
            worker.shutdown()
            worker.join(timeout=2.0)

        self._started = False
        logger.info("Thread pool shutdown complete")

    @property
    def stats(self) -> dict:
        """Worker and task counters."""
        with self._lock:
            workers = list(self._workers)

        return {
            "workers": len(workers),
            "in_flight": self._task_queue.unfinished_tasks,
            "completed": sum(w.tasks_completed for w in workers),
            "skipped": sum(w.tasks_skipped for w in workers),
            "failed": sum(w.tasks_failed for w in workers),
        }
