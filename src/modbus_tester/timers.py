"""Repeating timers for the polling scheduler: a real thread-backed one and a manual one for tests."""

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle: ...


class _ThreadTimerHandle:
    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self._interval = interval
        self._callback = callback
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name="modbus-poll-timer", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        while not self._cancelled.wait(self._interval):
            try:
                self._callback()
            except Exception:
                logger.exception("Poll tick failed")

    def cancel(self) -> None:
        self._cancelled.set()


class ThreadTimer:
    """Fires callback every interval seconds on a daemon thread until cancelled."""

    def call_every(self, interval: float, callback: Callable[[], None]) -> _ThreadTimerHandle:
        handle = _ThreadTimerHandle(interval, callback)
        handle.start()
        return handle


class _ManualTimerHandle:
    def __init__(self, timer: "ManualTimer", interval: float, callback: Callable[[], None], due: float) -> None:
        self._timer = timer
        self.interval = interval
        self.callback = callback
        self.due = due
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self._timer._discard(self)


class ManualTimer:
    """
    Virtual-time timer: nothing fires until advance() is called, and callbacks
    run synchronously on the caller's thread in due-time order.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: list[_ManualTimerHandle] = []

    def call_every(self, interval: float, callback: Callable[[], None]) -> _ManualTimerHandle:
        handle = _ManualTimerHandle(self, interval, callback, self.now + interval)
        self._handles.append(handle)
        return handle

    def _discard(self, handle: _ManualTimerHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    @property
    def pending(self) -> int:
        """Number of live (not cancelled) repeating timers."""
        return len(self._handles)

    def advance(self, seconds: float) -> int:
        """Move virtual time forward, firing every tick that falls due. Returns the number of ticks fired."""
        target = self.now + seconds
        fired = 0
        while True:
            live = [h for h in self._handles if not h.cancelled and h.due <= target]
            if not live:
                break
            handle = min(live, key=lambda h: h.due)
            self.now = handle.due
            handle.due += handle.interval
            handle.callback()
            fired += 1
        self.now = target
        return fired
