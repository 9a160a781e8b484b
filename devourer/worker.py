"""Single-worker FIFO task queue.

Items submitted to a `SerialWorker` are handled strictly one after another,
in submission order, by one background thread. Submitting while the worker
is busy only enqueues the item.
"""

from __future__ import annotations

import queue
import threading
from typing import Callable, Generic, Optional, TypeVar

from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_STOP = object()


class SerialWorker(Generic[T]):
    def __init__(self, handler: Callable[[T], None], name: str = "SerialWorker"):
        self.handler = handler
        self.name = name
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def submit(self, item: T) -> None:
        self._queue.put(item)
        self._ensure_started()

    def _ensure_started(self) -> None:
        with self._lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._run, daemon=True, name=self.name
                )
                self._thread.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.handler(item)
            except Exception as exc:
                logger.error(f"{self.name}: error handling {item}: {exc}")
            finally:
                self._queue.task_done()

    def join(self) -> None:
        """Block until every submitted item has been handled."""
        self._queue.join()

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            thread = self._thread
        if thread is None or not thread.is_alive():
            return
        self._queue.put(_STOP)
        thread.join(timeout)
