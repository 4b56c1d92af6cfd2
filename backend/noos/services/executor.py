"""
Bounded worker pools.

ThreadPoolExecutor queues without limit, so admission goes through a
non-blocking semaphore sized ``workers + queue_capacity``. A full pool
answers ``Rejected`` straight away instead of buffering the work.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from noos.config.settings import settings

logger = logging.getLogger(__name__)

ALGORITHM_POOL = "algorithm"
FILE_POOL = "file"


@dataclass(frozen=True)
class Accepted:
    """The pool took the work; ``future`` resolves when it finishes."""
    future: Future

    @property
    def accepted(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    """The pool refused the work. Nothing was queued."""
    reason: str
    active: int
    queued: int
    capacity: int

    @property
    def accepted(self) -> bool:
        return False


SubmitResult = Union[Accepted, Rejected]


@dataclass(frozen=True)
class ExecutorStats:
    name: str
    workers: int
    queue_capacity: int
    active: int
    queued: int

    @property
    def capacity(self) -> int:
        return self.workers + self.queue_capacity


class BoundedExecutor:
    """Fixed-size thread pool with a bounded admission queue."""

    def __init__(self, name: str, workers: int, queue_capacity: int):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_capacity < 0:
            raise ValueError("queue_capacity must be >= 0")

        self.name = name
        self.workers = workers
        self.queue_capacity = queue_capacity
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{name}-")
        self._slots = threading.BoundedSemaphore(workers + queue_capacity)
        self._lock = threading.Lock()
        self._active = 0
        self._queued = 0
        self._closed = False

        logger.info(
            "Executor '%s' initialized: workers=%d, queue=%d",
            name, workers, queue_capacity
        )

    def submit(self, fn: Callable, *args, **kwargs) -> SubmitResult:
        """Admit ``fn`` if a slot is free, otherwise reject without blocking."""
        if self._closed:
            return self._reject("executor is shut down")

        if not self._slots.acquire(blocking=False):
            return self._reject("queue is full")

        with self._lock:
            self._queued += 1

        try:
            future = self._pool.submit(self._run, fn, args, kwargs)
        except RuntimeError:
            # Pool shut down between the check and the submit
            with self._lock:
                self._queued -= 1
            self._slots.release()
            return self._reject("executor is shut down")

        future.add_done_callback(self._release)
        return Accepted(future)

    def stats(self) -> ExecutorStats:
        with self._lock:
            return ExecutorStats(
                name=self.name,
                workers=self.workers,
                queue_capacity=self.queue_capacity,
                active=self._active,
                queued=self._queued,
            )

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        self._closed = True
        self._pool.shutdown(wait=wait, cancel_futures=cancel_pending)
        logger.info("Executor '%s' shut down", self.name)

    def _run(self, fn: Callable, args: tuple, kwargs: dict):
        with self._lock:
            self._queued -= 1
            self._active += 1
        try:
            return fn(*args, **kwargs)
        finally:
            with self._lock:
                self._active -= 1

    def _release(self, future: Future) -> None:
        if future.cancelled():
            # Never reached _run
            with self._lock:
                self._queued -= 1
        self._slots.release()

    def _reject(self, reason: str) -> Rejected:
        stats = self.stats()
        logger.warning(
            "Task rejected by executor '%s' (%s). Active: %d, Queue: %d, Capacity: %d",
            self.name, reason, stats.active, stats.queued, stats.capacity
        )
        return Rejected(
            reason=reason,
            active=stats.active,
            queued=stats.queued,
            capacity=stats.capacity,
        )


# Persistent pools, created on first use
_executors: Dict[str, BoundedExecutor] = {}
_executors_lock = threading.Lock()


def _build(name: str) -> BoundedExecutor:
    if name == ALGORITHM_POOL:
        return BoundedExecutor(name, settings.ALGO_POOL_WORKERS, settings.ALGO_QUEUE_CAPACITY)
    if name == FILE_POOL:
        return BoundedExecutor(name, settings.FILE_POOL_WORKERS, settings.FILE_QUEUE_CAPACITY)
    raise KeyError(f"Unknown executor: {name}")


def get_executor(name: str) -> BoundedExecutor:
    with _executors_lock:
        executor = _executors.get(name)
        if executor is None:
            executor = _build(name)
            _executors[name] = executor
        return executor


def get_algorithm_executor() -> BoundedExecutor:
    return get_executor(ALGORITHM_POOL)


def get_file_executor() -> BoundedExecutor:
    return get_executor(FILE_POOL)


def shutdown_executors(wait: bool = True, executor: Optional[str] = None) -> None:
    """Shut down one or all persistent pools; they are rebuilt on next use."""
    with _executors_lock:
        names = [executor] if executor else list(_executors)
        targets = [_executors.pop(n) for n in names if n in _executors]
    for target in targets:
        target.shutdown(wait=wait)
