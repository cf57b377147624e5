"""Outbound notifications and the callback registry the broadcast layer subscribes to."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from .types import ConnectionType, RegisterType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    connection_type: ConnectionType | None = None
    error: str | None = None

    name = "connectionStatus"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"connected": self.connected}
        if self.connection_type is not None:
            out["type"] = self.connection_type.value
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class DataSample:
    success: bool
    timestamp: datetime
    register_type: RegisterType
    start_address: int
    values: tuple[bool | int, ...] = ()
    error: str | None = None

    name = "dataSample"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "registerType": self.register_type.value,
            "startAddress": self.start_address,
            "values": list(self.values),
        }
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a single-point write or a string block write (text set, registers_written > 0)."""

    success: bool
    address: int
    value: bool | int | None = None
    text: str | None = None
    registers_written: int = 0
    error: str | None = None

    name = "writeResult"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "address": self.address}
        if self.value is not None:
            out["value"] = self.value
        if self.text is not None:
            out["text"] = self.text
            out["registersWritten"] = self.registers_written
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class AliasUpdated:
    register_type: RegisterType
    address: int
    label: str | None = None

    name = "aliasUpdated"

    def to_dict(self) -> dict[str, Any]:
        return {"registerType": self.register_type.value, "address": self.address, "label": self.label}


Event = ConnectionStatus | DataSample | WriteResult | AliasUpdated
Subscriber = Callable[[Event], None]


class EventBus:
    """Callback registry. Subscribers run on the emitting thread; one that raises is logged and skipped."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event: Event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber failed handling %s", event.name)
