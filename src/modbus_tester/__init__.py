"""modbus-tester: poll, write and string-pack a Modbus RTU/TCP device through one managed session."""

__version__ = "0.2.0"

from .aliases import AliasStore
from .codec import capability, coerce_write_value, decode_string, encode_string
from .config import SessionConfig
from .errors import (
    ConnectionLost,
    DeviceError,
    EmptyText,
    ModbusTesterError,
    NoData,
    NoPriorConnection,
    NotConnected,
    OutOfRange,
    TextTooLong,
    TransportOpenFailure,
    UnsupportedOperation,
    ValidationError,
)
from .events import AliasUpdated, ConnectionStatus, DataSample, WriteResult
from .session import ModbusSession
from .timers import ManualTimer, ThreadTimer
from .types import (
    ConnectionState,
    ConnectionType,
    EthernetConfig,
    PollState,
    QueryConfig,
    RegisterType,
    Sample,
    SerialConfig,
)

__all__ = [
    "__version__",
    "ModbusSession",
    "SessionConfig",
    "AliasStore",
    "capability",
    "coerce_write_value",
    "decode_string",
    "encode_string",
    "ModbusTesterError",
    "ConnectionLost",
    "DeviceError",
    "EmptyText",
    "NoData",
    "NoPriorConnection",
    "NotConnected",
    "OutOfRange",
    "TextTooLong",
    "TransportOpenFailure",
    "UnsupportedOperation",
    "ValidationError",
    "AliasUpdated",
    "ConnectionStatus",
    "DataSample",
    "WriteResult",
    "ManualTimer",
    "ThreadTimer",
    "ConnectionState",
    "ConnectionType",
    "EthernetConfig",
    "PollState",
    "QueryConfig",
    "RegisterType",
    "Sample",
    "SerialConfig",
]
