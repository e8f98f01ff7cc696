"""Single-writer task queue serialising every index and storage mutation."""
from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional, Tuple, TypeVar

from .errors import BackupError

LOGGER = logging.getLogger("docsnap.backup.tasks")

T = TypeVar("T")

_STOP = object()


class SerialTaskQueue:
    """Run submitted callables one at a time, in submission order.

    A single daemon worker drains a FIFO queue; the next task starts only after
    the previous one settled, successfully or not. A task that submits more work
    runs it inline, which keeps the single-writer guarantee without deadlocking.
    """

    def __init__(self, name: str = "docsnap-backup-queue") -> None:
        self._name = name
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._closed = False

    # ------------------------------------------------------------------
    def _ensure_worker(self) -> None:
        with self._lock:
            if self._closed:
                raise BackupError(f"Task queue {self._name} is closed")
            if self._thread and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run_loop, name=self._name, daemon=True)
            self._thread.start()

    def _run_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                future, task = item
                self._execute(future, task)
            finally:
                self._queue.task_done()

    @staticmethod
    def _execute(future: Future, task: Tuple[Callable[..., Any], tuple, dict]) -> None:
        if not future.set_running_or_notify_cancel():
            return
        func, args, kwargs = task
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    # ------------------------------------------------------------------
    @property
    def in_worker(self) -> bool:
        thread = self._thread
        return thread is not None and threading.current_thread() is thread

    def submit(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        future: "Future[T]" = Future()
        if self.in_worker:
            self._execute(future, (func, args, kwargs))
            return future
        self._ensure_worker()
        self._queue.put((future, (func, args, kwargs)))
        return future

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return self.submit(func, *args, **kwargs).result()

    def close(self, timeout: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
        if thread and thread.is_alive():
            self._queue.put(_STOP)
            thread.join(timeout=timeout)
            if thread.is_alive():
                LOGGER.warning("task queue %s did not stop within %.1fs", self._name, timeout)


__all__ = ["SerialTaskQueue"]
