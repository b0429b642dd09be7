"""Keyed FIFO task queue with one worker thread per conversation."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100

Task = Callable[[], None]

_STOP = object()


class QueueFullError(RuntimeError):
    """Key's buffer is at capacity; the task was not accepted."""

    def __init__(self, key: str) -> None:
        super().__init__(f"queue full for chat {key}")
        self.key = key


@dataclass(slots=True, eq=False)
class _Worker:
    key: str
    tasks: queue.Queue[object]
    thread: threading.Thread | None = None
    pending: int = 0
    closed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class ConversationQueue:
    """Run tasks sharing a key one at a time, in submission order.

    Different keys run in parallel on their own worker threads, created on
    first use and kept until :meth:`shutdown`.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("Queue capacity must be > 0.")
        self._capacity = capacity
        self._lock = threading.Lock()
        self._workers: dict[str, _Worker] = {}

    def enqueue(self, key: str, task: Task) -> None:
        """Buffer ``task`` for ``key`` without blocking; raise ``QueueFullError`` when full."""

        with self._lock:
            worker = self._workers.get(key)
            if worker is None or worker.closed:
                worker = self._spawn(key)
                self._workers[key] = worker
            with worker.lock:
                worker.pending += 1
            try:
                worker.tasks.put_nowait(task)
            except queue.Full:
                with worker.lock:
                    worker.pending -= 1
                raise QueueFullError(key) from None

    def pending_count(self, key: str) -> int:
        """Tasks submitted for ``key`` and not yet finished, the running one included."""

        with self._lock:
            worker = self._workers.get(key)
        if worker is None:
            return 0
        with worker.lock:
            return worker.pending

    def shutdown(self) -> None:
        """Let every worker drain its buffer, wait for them, then forget them."""

        with self._lock:
            workers = list(self._workers.values())
            for worker in workers:
                worker.closed = True

        for worker in workers:
            worker.tasks.put(_STOP)
        for worker in workers:
            if worker.thread is not None:
                worker.thread.join()

        with self._lock:
            for key, worker in list(self._workers.items()):
                if worker.closed:
                    del self._workers[key]
        logger.info("Conversation queue shut down (%d workers)", len(workers))

    def _spawn(self, key: str) -> _Worker:
        worker = _Worker(key=key, tasks=queue.Queue(maxsize=self._capacity))
        worker.thread = threading.Thread(
            target=self._run_worker,
            args=(worker,),
            daemon=True,
            name=f"conversation-{key}",
        )
        worker.thread.start()
        return worker

    def _run_worker(self, worker: _Worker) -> None:
        while True:
            task = worker.tasks.get()
            if task is _STOP:
                return
            try:
                task()  # type: ignore[operator]
            except Exception:
                logger.exception("Task failed for chat %s", worker.key)
            finally:
                with worker.lock:
                    worker.pending -= 1
