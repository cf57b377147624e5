"""Core data model: register/connection enums, connection and query configs, poll state, samples."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .errors import OutOfRange, ValidationError

MAX_ADDRESS = 65535
MAX_REGISTER_VALUE = 65535

# Per-request limits from the Modbus application protocol
MAX_BIT_QUANTITY = 2000
MAX_REGISTER_QUANTITY = 125
MAX_WRITE_REGISTERS = 123

_PARITIES = ("none", "even", "odd")


class RegisterType(str, Enum):
    """Modbus tables the session can poll."""

    COIL = "coil"
    DISCRETE_INPUT = "discrete_input"
    INPUT_REGISTER = "input_register"
    HOLDING_REGISTER = "holding_register"

    @property
    def is_bit(self) -> bool:
        return self in (RegisterType.COIL, RegisterType.DISCRETE_INPUT)

    @property
    def max_quantity(self) -> int:
        return MAX_BIT_QUANTITY if self.is_bit else MAX_REGISTER_QUANTITY

    @classmethod
    def parse(cls, raw: "str | RegisterType") -> "RegisterType":
        """Accept canonical names and the camelCase plurals used by older snapshots."""
        if isinstance(raw, RegisterType):
            return raw
        key = str(raw).strip()
        if key in _LEGACY_REGISTER_NAMES:
            return _LEGACY_REGISTER_NAMES[key]
        try:
            return cls(key.lower())
        except ValueError:
            raise ValidationError(f"Unknown register type: {raw!r}") from None


_LEGACY_REGISTER_NAMES = {
    "coils": RegisterType.COIL,
    "discreteInputs": RegisterType.DISCRETE_INPUT,
    "inputRegisters": RegisterType.INPUT_REGISTER,
    "holdingRegisters": RegisterType.HOLDING_REGISTER,
}


class ConnectionType(str, Enum):
    """Physical link used to reach the device."""

    SERIAL = "serial"
    ETHERNET = "ethernet"

    @classmethod
    def parse(cls, raw: "str | ConnectionType") -> "ConnectionType":
        if isinstance(raw, ConnectionType):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown connection type: {raw!r}") from None


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def check_int(name: str, value: object, low: int, high: int) -> int:
    """Return value as int if it is an integer within [low, high]; raise ValidationError otherwise."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if not (low <= value <= high):
        raise OutOfRange(name, value, low, high)
    return value


@dataclass(frozen=True)
class SerialConfig:
    """RTU link settings."""

    port: str = "COM1"
    baud_rate: int = 9600
    data_bits: int = 8
    stop_bits: int = 1
    parity: str = "none"

    def __post_init__(self) -> None:
        if not self.port or not self.port.strip():
            raise ValidationError("Serial port cannot be empty")
        if isinstance(self.baud_rate, bool) or not isinstance(self.baud_rate, int) or self.baud_rate <= 0:
            raise ValidationError(f"baud rate must be a positive integer, got {self.baud_rate!r}")
        check_int("data bits", self.data_bits, 5, 8)
        if self.stop_bits not in (1, 2):
            raise ValidationError(f"stop bits must be 1 or 2, got {self.stop_bits!r}")
        if self.parity not in _PARITIES:
            raise ValidationError(f"parity must be one of {', '.join(_PARITIES)}, got {self.parity!r}")


@dataclass(frozen=True)
class EthernetConfig:
    """TCP link settings."""

    host: str = "192.168.1.100"
    port: int = 502

    def __post_init__(self) -> None:
        if not self.host or not self.host.strip():
            raise ValidationError("Host cannot be empty")
        check_int("TCP port", self.port, 1, 65535)


ConnectionConfig = SerialConfig | EthernetConfig


@dataclass(frozen=True)
class QueryConfig:
    """Register window read by each poll."""

    slave_id: int = 1
    start_address: int = 0
    quantity: int = 10
    register_type: RegisterType = RegisterType.HOLDING_REGISTER

    def __post_init__(self) -> None:
        if not isinstance(self.register_type, RegisterType):
            object.__setattr__(self, "register_type", RegisterType.parse(self.register_type))
        check_int("slave id", self.slave_id, 0, 255)
        check_int("start address", self.start_address, 0, MAX_ADDRESS)
        check_int("quantity", self.quantity, 1, self.register_type.max_quantity)
        if self.start_address + self.quantity > MAX_ADDRESS + 1:
            raise ValidationError(
                f"Window {self.start_address}+{self.quantity} runs past address {MAX_ADDRESS}"
            )


@dataclass(frozen=True)
class PollState:
    active: bool
    interval: float


@dataclass(frozen=True)
class Sample:
    """Most recent successful read."""

    timestamp: datetime
    register_type: RegisterType
    start_address: int
    values: tuple[bool | int, ...]


@dataclass(frozen=True)
class RegisterCapability:
    readable: bool
    writable: bool
    supports_strings: bool
