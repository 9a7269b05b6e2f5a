"""Single-consumer job queue shared by the sync timer and device callbacks."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

_STOP = object()


class SerialDispatcher:
    """Runs submitted jobs one at a time on a dedicated worker thread."""

    def __init__(self, name: str = "hapbridge-dispatch") -> None:
        self._queue: queue.Queue[Any] = queue.Queue()
        self._thread = threading.Thread(target=self._drain, name=name, daemon=True)
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
        self._thread.start()

    def submit(self, job: Callable[..., Any], *args: Any) -> bool:
        with self._lock:
            if self._closed:
                LOGGER.debug("Dropping job %r submitted after close", job)
                return False
            self._queue.put((job, args))
        return True

    def close(self, timeout: float | None = None) -> None:
        """Stop accepting jobs, run the ones already queued, and join the worker."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
            started = self._started
        if started:
            self._thread.join(timeout)
        else:
            self._drain()

    def run_pending(self) -> int:
        """Run queued jobs on the calling thread while no worker is draining them.

        Returns the number of jobs run; always 0 once the worker has started.
        """
        with self._lock:
            if self._started:
                return 0
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count
            if item is _STOP:
                return count
            self._execute(*item)
            count += 1

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._execute(*item)

    @staticmethod
    def _execute(job: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            job(*args)
        except Exception:
            LOGGER.exception("Dispatched job %r failed", job)
