"""
=============================================================================
WORKER POOL
=============================================================================

Every server instance gets its own bounded pool of worker threads. The
engine hands each accepted connection to the pool; handlers that go async
can schedule follow-up work on the same pool.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                   ThreadPool "billing"                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   submit(func) ──►  ┌───────────────────────┐                       │
    │                     │  Task queue (bounded) │   full → submit()     │
    │                     └───────────┬───────────┘   returns False       │
    │                                 │                                   │
    │          ┌──────────────────────┼──────────────────────┐            │
    │          ▼                      ▼                      ▼            │
    │   billing-worker-0       billing-worker-1   ...  billing-worker-N   │
    │                                                                     │
    │   min_workers started with the pool                                 │
    │   +1 worker when every worker is busy and tasks are waiting         │
    │   -1 worker after idle_timeout with no work, never below min        │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Pools are never shared between server instances: stopping one service
cannot starve or kill the threads of another.

=============================================================================
SIZING SETTINGS
=============================================================================

    <service>.http.minThreads        4        workers kept alive
    <service>.http.maxThreads        16       upper bound on workers
    <service>.http.threadQueueSize   100      pending tasks before rejecting
    <service>.http.threadIdleTime    60000    ms before an extra worker exits

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..config import Configuration
from ..errors import ConfigurationError


logger = logging.getLogger(__name__)


DEFAULT_MIN_THREADS = 4
DEFAULT_MAX_THREADS = 16
DEFAULT_QUEUE_SIZE = 100
DEFAULT_IDLE_TIME_MS = 60000


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: ``func(*args, **kwargs)``."""

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.monotonic)


class Worker(threading.Thread):
    """
    One pool thread.

    Loop: take a task, run it, log (never propagate) its exception. A
    ``None`` task is a poison pill. When no task arrives within
    ``idle_timeout`` the worker asks the pool whether it may retire.
    """

    def __init__(self, pool: "ThreadPool", worker_id: int):
        super().__init__(name=f"{pool.name}-worker-{worker_id}", daemon=True)
        self.pool = pool
        self.worker_id = worker_id
        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0
        self._shutdown = threading.Event()

    def run(self):
        logger.debug(f"{self.name} started")

        while not self._shutdown.is_set():
            try:
                task = self.pool._task_queue.get(timeout=self.pool.idle_timeout)
            except queue.Empty:
                if self.pool._retire(self):
                    break
                continue

            try:
                if task is None:
                    break
                self._execute(task)
            finally:
                self.pool._task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} stopped")

    def _execute(self, task: Task):
        self.state = WorkerState.BUSY
        started = time.monotonic()
        try:
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
        except Exception as e:
            elapsed = time.monotonic() - started
            logger.exception(f"{self.name} task failed after {elapsed:.3f}s: {e}")
            self.tasks_failed += 1
        finally:
            self.state = WorkerState.IDLE

    def shutdown(self):
        self._shutdown.set()


class ThreadPool:
    """
    Bounded, named worker pool for one server instance.

    Usage:
        pool = ThreadPool("billing", min_workers=2, max_workers=8)
        pool.start()
        if not pool.submit(handle, args=(conn,)):
            ...   # saturated: reject the work
        pool.shutdown(wait=True, timeout=10)
    """

    def __init__(
        self,
        name: str,
        min_workers: int = DEFAULT_MIN_THREADS,
        max_workers: int = DEFAULT_MAX_THREADS,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        idle_timeout: float = DEFAULT_IDLE_TIME_MS / 1000.0,
    ):
        """
        Args:
            name: Prefix of every worker thread name (the service name).
            min_workers: Workers created at start and kept alive.
            max_workers: Upper bound reached by scaling up under load.
            max_queue_size: Pending tasks accepted before submit() refuses.
            idle_timeout: Seconds an extra worker waits for work before
                          exiting.
        """
        if min_workers < 1:
            raise ValueError("min_workers must be >= 1")
        if max_workers < min_workers:
            raise ValueError("max_workers must be >= min_workers")
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        self.name = name
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.max_queue_size = max_queue_size
        self.idle_timeout = idle_timeout

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=max_queue_size)
        self._workers: list[Worker] = []
        self._lock = threading.Lock()  # guards _workers and _next_worker_id
        self._next_worker_id = 0
        self._started = False
        self._shutdown = False

    def __repr__(self) -> str:
        return f"ThreadPool({self.name!r}, workers={len(self._workers)}/{self.max_workers})"

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self):
        """Start ``min_workers`` threads. Idempotent."""
        if self._started:
            return

        with self._lock:
            for _ in range(self.min_workers):
                self._spawn_worker()
        self._started = True
        self._shutdown = False

        logger.debug(f"Thread pool {self.name} started with {self.min_workers} workers")

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop accepting work and stop every worker.

        Args:
            wait: Let queued tasks finish before stopping workers.
            timeout: Upper bound in seconds on draining the queue and
                     joining the workers. With None the queue is drained
                     fully and each worker gets 2 seconds to exit.
        """
        if not self._started:
            return

        self._shutdown = True
        deadline = None if timeout is None else time.monotonic() + timeout

        if wait:
            while self._task_queue.unfinished_tasks:
                if deadline is not None and time.monotonic() > deadline:
                    logger.warning(f"Thread pool {self.name}: shutdown timeout, abandoning tasks")
                    break
                time.sleep(0.05)
        else:
            self._discard_pending()

        with self._lock:
            workers = list(self._workers)
            self._workers.clear()

        for worker in workers:
            worker.shutdown()
            try:
                self._task_queue.put_nowait(None)
            except queue.Full:
                pass  # the worker sees its shutdown flag after the next get()

        for worker in workers:
            if deadline is None:
                worker.join(timeout=2.0)
            else:
                worker.join(timeout=max(0.0, deadline - time.monotonic()))

        self._started = False
        logger.debug(f"Thread pool {self.name} stopped")

    def _discard_pending(self):
        while True:
            try:
                self._task_queue.get_nowait()
            except queue.Empty:
                return
            self._task_queue.task_done()

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Queue ``func(*args, **kwargs)`` without blocking.

        Returns:
            True if the task was queued, False if the queue is full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._started or self._shutdown:
            raise RuntimeError(f"Thread pool {self.name} is not running")

        try:
            self._task_queue.put_nowait(Task(func=func, args=args, kwargs=kwargs or {}))
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return
            if any(w.state is WorkerState.IDLE for w in self._workers):
                return
            if self._task_queue.qsize() > 0:
                logger.debug(
                    f"Thread pool {self.name}: scaling up to {len(self._workers) + 1} workers"
                )
                self._spawn_worker()

    def _spawn_worker(self) -> Worker:
        # caller holds self._lock
        worker = Worker(self, self._next_worker_id)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def _retire(self, worker: Worker) -> bool:
        """Called by an idle worker; True means it should exit."""
        with self._lock:
            if worker not in self._workers:
                return True
            if len(self._workers) <= self.min_workers:
                return False
            self._workers.remove(worker)
        logger.debug(f"Thread pool {self.name}: {worker.name} retired after idling")
        return True

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state is WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state is WorkerState.IDLE)

    @property
    def queued_tasks(self) -> int:
        return self._task_queue.qsize()

    @property
    def has_capacity(self) -> bool:
        """
        True when a task submitted now would start without waiting behind
        busy workers: an idle worker is free for it, or the pool can grow.
        """
        with self._lock:
            if len(self._workers) < self.max_workers:
                return True
        return self.idle_workers > self._task_queue.qsize()

    @property
    def is_saturated(self) -> bool:
        """True when the task queue is full and submit() would refuse work."""
        return self._task_queue.full()

    @property
    def stats(self) -> dict:
        return {
            "name": self.name,
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
                "idle": self.idle_workers,
                "max": self.max_workers,
            },
            "tasks": {
                "queued": self._task_queue.qsize(),
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }


def create_pool(service_name: str, config: Configuration) -> ThreadPool:
    """
    Build (but do not start) the worker pool for ``service_name``.

    Raises:
        ConfigurationError: If a sizing setting is malformed or inconsistent.
    """
    prefix = f"{service_name}.http."

    min_threads = config.get_int(prefix + "minThreads", DEFAULT_MIN_THREADS)
    max_threads = config.get_int(prefix + "maxThreads", max(DEFAULT_MAX_THREADS, min_threads))
    queue_size = config.get_int(prefix + "threadQueueSize", DEFAULT_QUEUE_SIZE)
    idle_ms = config.get_int(prefix + "threadIdleTime", DEFAULT_IDLE_TIME_MS)

    try:
        return ThreadPool(
            name=service_name,
            min_workers=min_threads,
            max_workers=max_threads,
            max_queue_size=queue_size,
            idle_timeout=idle_ms / 1000.0,
        )
    except ValueError as e:
        raise ConfigurationError(prefix + "threads", str(e)) from e
