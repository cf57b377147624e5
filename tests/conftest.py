"""Shared fixtures: an in-memory transport, a manual timer and a session wired to both."""

import threading
from typing import Any, Sequence

import pytest

from modbus_tester import EthernetConfig, ManualTimer, ModbusSession
from modbus_tester.errors import TransportOpenFailure
from modbus_tester.types import ConnectionType, RegisterType


class FakeTransport:
    """Records every exchange; can hold exchanges on a gate and raise queued errors."""

    def __init__(self, connection_type: ConnectionType, config: Any) -> None:
        self.connection_type = connection_type
        self.config = config
        self.calls: list[tuple] = []
        self.opened = False
        self.closed = False
        self.open_error: Exception | None = None
        self.errors: list[Exception] = []
        self.gate: threading.Event | None = None
        self.entered = threading.Event()
        self.active = 0
        self.max_active = 0
        self.coils: dict[int, bool] = {}
        self.holding: dict[int, int] = {}
        self._lock = threading.Lock()

    def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def _exchange(self, call: tuple) -> None:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(call)
        self.entered.set()
        try:
            if self.gate is not None:
                assert self.gate.wait(5), "gate never opened"
            if self.errors:
                raise self.errors.pop(0)
        finally:
            with self._lock:
                self.active -= 1

    def read(self, register_type: RegisterType, address: int, count: int, slave_id: int) -> list:
        self._exchange(("read", register_type, address, count, slave_id))
        if register_type.is_bit:
            return [self.coils.get(a, False) for a in range(address, address + count)]
        return [self.holding.get(a, 0) for a in range(address, address + count)]

    def write_coil(self, address: int, value: bool, slave_id: int) -> None:
        self._exchange(("write_coil", address, value, slave_id))
        self.coils[address] = value

    def write_register(self, address: int, value: int, slave_id: int) -> None:
        self._exchange(("write_register", address, value, slave_id))
        self.holding[address] = value

    def write_registers(self, address: int, values: Sequence[int], slave_id: int) -> None:
        self._exchange(("write_registers", address, list(values), slave_id))
        for i, v in enumerate(values):
            self.holding[address + i] = v


class FakeFactory:
    """TransportFactory that hands out a new FakeTransport per connect."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.fail_next: Exception | None = None

    def __call__(self, connection_type: ConnectionType, config: Any) -> FakeTransport:
        transport = FakeTransport(connection_type, config)
        if self.fail_next is not None:
            transport.open_error, self.fail_next = self.fail_next, None
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


ETHERNET = EthernetConfig(host="10.0.0.5", port=502)


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def session(factory: FakeFactory, timer: ManualTimer):
    s = ModbusSession(transport_factory=factory, timer=timer)
    yield s
    s.close()


@pytest.fixture
def events(session: ModbusSession) -> list:
    recorded: list = []
    session.subscribe(recorded.append)
    return recorded


@pytest.fixture
def connected(session: ModbusSession) -> ModbusSession:
    session.connect("ethernet", ETHERNET)
    return session


@pytest.fixture
def open_failure() -> TransportOpenFailure:
    return TransportOpenFailure("Failed to connect to 10.0.0.5:502")
