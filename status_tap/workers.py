from __future__ import annotations

from concurrent.futures import Future
import logging
import queue
import threading
from typing import Any, Callable, TypeVar

T = TypeVar("T")

_Task = tuple["Future[Any]", Callable[..., Any], tuple[Any, ...]]

# Queued once per worker on shutdown
_STOP = None


class WorkerPool:
    """Fixed set of daemon threads running blocking collector calls.

    Workers are daemon threads so a call stuck in the kernel (a hung network
    mount, a frozen helper process) cannot keep the interpreter alive once
    the scheduler has given up on it. Results are handed back through
    ``concurrent.futures.Future`` objects.
    """

    def __init__(self, max_workers: int, name: str = "status-tap-io") -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.logger = logging.getLogger(self.__class__.__name__)
        self._queue: queue.Queue[_Task | None] = queue.Queue()
        self._stop = threading.Event()
        self._threads = [
            threading.Thread(target=self._run, name=f"{name}-{index}", daemon=True)
            for index in range(max_workers)
        ]
        for thread in self._threads:
            thread.start()

    @property
    def threads(self) -> list[threading.Thread]:
        return list(self._threads)

    def submit(self, fn: Callable[..., T], *args: Any) -> Future[T]:
        if self._stop.is_set():
            raise RuntimeError("Worker pool is shut down.")
        future: Future[T] = Future()
        self._queue.put((future, fn, args))
        return future

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            if task is _STOP:
                return
            future, fn, args = task
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except Exception as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)

    def shutdown(self) -> None:
        """Stop taking work and cancel queued calls; running calls are left behind."""
        self._stop.set()
        cancelled = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                break
            if task is not _STOP and task[0].cancel():
                cancelled += 1
        for _ in self._threads:
            self._queue.put(_STOP)
        if cancelled:
            self.logger.debug("Cancelled %s queued collector calls.", cancelled)
