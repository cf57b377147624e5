"""PollingScheduler: fires a read tick every interval while active."""

import logging
from typing import Callable

from .errors import ValidationError
from .timers import Timer, TimerHandle

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0


class PollingScheduler:
    """
    Start/stop/interval control over a repeating timer.

    Ticks only submit work; they never wait for it. A slow device therefore
    backs ticks up in the request queue instead of overlapping them. stop()
    cancels future ticks only.
    """

    def __init__(self, tick: Callable[[], object], timer: Timer, interval: float = DEFAULT_INTERVAL) -> None:
        self._tick = tick
        self._timer = timer
        self._interval = _check_interval(interval)
        self._handle: TimerHandle | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        if self._handle is not None:
            return
        handle: TimerHandle | None = None

        def fire() -> None:
            # A tick racing a stop() or interval change belongs to a dead handle
            if self._handle is handle:
                self._tick()

        handle = self._timer.call_every(self._interval, fire)
        self._handle = handle
        logger.debug("Polling started every %.3fs", self._interval)

    def stop(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()
            logger.debug("Polling stopped")

    def set_interval(self, seconds: float) -> None:
        """Change the interval; restarts the timer when active."""
        seconds = _check_interval(seconds)
        was_active = self.active
        self.stop()
        self._interval = seconds
        if was_active:
            self.start()


def _check_interval(seconds: float) -> float:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds <= 0:
        raise ValidationError(f"Interval must be positive, got {seconds!r}")
    return float(seconds)
