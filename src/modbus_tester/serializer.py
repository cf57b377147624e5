"""RequestSerializer: a single worker that runs device transactions one at a time, in arrival order."""

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from .errors import NotConnected

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Job:
    action: Callable[[], Any]
    future: Future
    label: str


class RequestSerializer:
    """
    FIFO of device transactions drained by one worker thread.

    Scheduled polls and ad-hoc requests share the queue, so at most one
    transaction touches the transport at any time. A job that reaches the
    head of the queue while is_connected() is false fails with NotConnected
    without running. A running job is never interrupted.
    """

    def __init__(self, is_connected: Callable[[], bool], name: str = "modbus-serializer") -> None:
        self._is_connected = is_connected
        self._name = name
        self._queue: "queue.Queue[_Job | None]" = queue.Queue()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0
        self._thread: threading.Thread | None = None
        self._closed = False

    def submit(self, action: Callable[[], T], label: str = "request") -> "Future[T]":
        """Queue action behind everything already submitted; returns a Future for its result."""
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise NotConnected("Session is closed")
            self._pending += 1
            self._queue.put(_Job(action, future, label))
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
                self._thread.start()
        return future

    @property
    def pending(self) -> int:
        """Jobs submitted but not yet finished (including the one running)."""
        with self._lock:
            return self._pending

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every submitted job has finished. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; queued jobs still run (or fail NotConnected) before the worker exits."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
        self._queue.put(None)
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join()

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            if job is None:
                return
            try:
                self._execute(job)
            finally:
                with self._idle:
                    self._pending -= 1
                    if self._pending == 0:
                        self._idle.notify_all()

    def _execute(self, job: _Job) -> None:
        if not job.future.set_running_or_notify_cancel():
            return
        if not self._is_connected():
            logger.debug("Dropping %s: not connected", job.label)
            job.future.set_exception(NotConnected())
            return
        logger.debug("Running %s", job.label)
        try:
            result = job.action()
        except Exception as e:
            job.future.set_exception(e)
        else:
            job.future.set_result(result)
