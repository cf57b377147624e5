"""Tests for event payloads and the EventBus callback registry."""

from datetime import datetime, timezone

from modbus_tester import AliasUpdated, ConnectionStatus, DataSample, WriteResult
from modbus_tester.events import EventBus
from modbus_tester.types import ConnectionType, RegisterType


def test_payloads() -> None:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert ConnectionStatus(True, ConnectionType.SERIAL).to_dict() == {"connected": True, "type": "serial"}
    assert ConnectionStatus(False, error="boom").to_dict() == {"connected": False, "error": "boom"}
    assert DataSample(True, ts, RegisterType.COIL, 4, (True, False)).to_dict() == {
        "success": True,
        "timestamp": "2024-01-01T00:00:00+00:00",
        "registerType": "coil",
        "startAddress": 4,
        "values": [True, False],
    }
    assert WriteResult(True, 10, text="AB", registers_written=2).to_dict() == {
        "success": True,
        "address": 10,
        "text": "AB",
        "registersWritten": 2,
    }
    assert AliasUpdated(RegisterType.HOLDING_REGISTER, 1).to_dict() == {
        "registerType": "holding_register",
        "address": 1,
        "label": None,
    }


def test_emit_reaches_subscribers_in_order() -> None:
    bus = EventBus()
    seen: list[tuple[str, object]] = []
    bus.subscribe(lambda e: seen.append(("a", e)))
    bus.subscribe(lambda e: seen.append(("b", e)))
    event = ConnectionStatus(True, ConnectionType.ETHERNET)
    bus.emit(event)
    assert seen == [("a", event), ("b", event)]


def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus()
    seen: list[object] = []

    def broken(_event: object) -> None:
        raise RuntimeError("subscriber bug")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.emit(ConnectionStatus(False))
    assert seen == [ConnectionStatus(False)]


def test_unsubscribe() -> None:
    bus = EventBus()
    seen: list[object] = []
    unsubscribe = bus.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    bus.emit(ConnectionStatus(False))
    assert seen == []
