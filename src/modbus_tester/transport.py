"""Transport capability: one framed Modbus exchange over pymodbus, with error classification at the boundary."""

import logging
from typing import Any, Callable, Protocol, Sequence

from pymodbus.client import ModbusSerialClient, ModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException, ModbusIOException

from .errors import ConnectionLost, DeviceError, ModbusTesterError, TransportOpenFailure, ValidationError
from .types import ConnectionConfig, ConnectionType, EthernetConfig, RegisterType, SerialConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0
DEFAULT_RETRIES = 1

_PYMODBUS_PARITY = {"none": "N", "even": "E", "odd": "O"}

_READ_FUNCTIONS = {
    RegisterType.COIL: "read_coils",
    RegisterType.DISCRETE_INPUT: "read_discrete_inputs",
    RegisterType.INPUT_REGISTER: "read_input_registers",
    RegisterType.HOLDING_REGISTER: "read_holding_registers",
}


class Transport(Protocol):
    """What the session needs from a Modbus link. Implementations raise only classified errors."""

    def open(self) -> None: ...

    def close(self) -> None: ...

    def read(self, register_type: RegisterType, address: int, count: int, slave_id: int) -> list[bool] | list[int]: ...

    def write_coil(self, address: int, value: bool, slave_id: int) -> None: ...

    def write_register(self, address: int, value: int, slave_id: int) -> None: ...

    def write_registers(self, address: int, values: Sequence[int], slave_id: int) -> None: ...


TransportFactory = Callable[[ConnectionType, ConnectionConfig], Transport]


def classify_error(
    exc: BaseException,
    *,
    register_type: RegisterType | None = None,
    address: int | None = None,
) -> ModbusTesterError:
    """
    Map a library/OS exception to ConnectionLost, DeviceError or ValidationError.

    This is the only place raw transport errors are inspected; everything above
    works with the classified taxonomy.
    """
    table = register_type.value if register_type is not None else None
    if isinstance(exc, ModbusTesterError):
        return exc
    if isinstance(exc, ConnectionException):
        return ConnectionLost(str(exc), register_type=table, address=address, cause=exc)
    if isinstance(exc, ModbusIOException):
        # No response within the timeout; the link itself may still be fine
        return DeviceError(str(exc), register_type=table, address=address, cause=exc)
    if isinstance(exc, ModbusException):
        if "not connected" in str(exc).lower():
            return ConnectionLost(str(exc), register_type=table, address=address, cause=exc)
        return DeviceError(str(exc), register_type=table, address=address, cause=exc)
    if isinstance(exc, TimeoutError):
        return DeviceError(str(exc) or "Timed out", register_type=table, address=address, cause=exc)
    if isinstance(exc, OSError):
        # Reset, broken pipe, not connected, and serial port errors (serial.SerialException is an OSError)
        return ConnectionLost(str(exc) or type(exc).__name__, register_type=table, address=address, cause=exc)
    if isinstance(exc, (ValueError, TypeError)):
        return ValidationError(str(exc))
    return DeviceError(f"{type(exc).__name__}: {exc}", register_type=table, address=address, cause=exc)


class PymodbusTransport:
    """
    Transport over pymodbus ModbusTcpClient / ModbusSerialClient.
    Each instance wraps one client; a faulted instance is discarded, never reopened.
    """

    def __init__(
        self,
        connection_type: ConnectionType,
        config: ConnectionConfig,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
    ) -> None:
        self._connection_type = connection_type
        self._config = config
        self._timeout = timeout
        self._retries = retries
        self._client: ModbusTcpClient | ModbusSerialClient | None = None

    def _build_client(self) -> ModbusTcpClient | ModbusSerialClient:
        cfg = self._config
        if self._connection_type == ConnectionType.ETHERNET:
            assert isinstance(cfg, EthernetConfig)
            return ModbusTcpClient(
                host=cfg.host,
                port=cfg.port,
                timeout=self._timeout,
                retries=self._retries,
            )
        assert isinstance(cfg, SerialConfig)
        return ModbusSerialClient(
            port=cfg.port,
            baudrate=cfg.baud_rate,
            bytesize=cfg.data_bits,
            parity=_PYMODBUS_PARITY[cfg.parity],
            stopbits=cfg.stop_bits,
            timeout=self._timeout,
            retries=self._retries,
        )

    def describe(self) -> str:
        cfg = self._config
        if isinstance(cfg, EthernetConfig):
            return f"{cfg.host}:{cfg.port}"
        return f"{cfg.port} @ {cfg.baud_rate} {cfg.data_bits}{_PYMODBUS_PARITY[cfg.parity]}{cfg.stop_bits}"

    def open(self) -> None:
        """Open the link; raises TransportOpenFailure."""
        client = self._build_client()
        try:
            ok = client.connect()
        except (ModbusException, OSError) as e:
            raise TransportOpenFailure(f"Failed to connect to {self.describe()}: {e}", cause=e) from e
        if not ok:
            raise TransportOpenFailure(f"Failed to connect to {self.describe()}")
        self._client = client
        logger.debug("Transport open: %s", self.describe())

    def close(self) -> None:
        """Close the link; close-time errors are logged and dropped."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Error closing Modbus client: %s", e)
            self._client = None

    def _exchange(
        self,
        func_name: str,
        register_type: RegisterType,
        address: int,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        if self._client is None:
            raise ConnectionLost("Transport is not open", register_type=register_type.value, address=address)
        func = getattr(self._client, func_name)
        try:
            rr = func(address, *args, **kwargs)
        except Exception as e:
            raise classify_error(e, register_type=register_type, address=address) from e
        if rr is None:
            raise DeviceError("No response", register_type=register_type.value, address=address)
        if rr.isError():
            raise DeviceError(
                str(rr),
                exception_code=getattr(rr, "exception_code", None),
                register_type=register_type.value,
                address=address,
            )
        return rr

    def read(self, register_type: RegisterType, address: int, count: int, slave_id: int) -> list[bool] | list[int]:
        rr = self._exchange(_READ_FUNCTIONS[register_type], register_type, address, count=count, device_id=slave_id)
        if register_type.is_bit:
            bits = getattr(rr, "bits", None) or []
            if len(bits) < count:
                raise DeviceError("Short bit response", register_type=register_type.value, address=address)
            # Bits arrive padded to a whole byte
            return [bool(b) for b in bits[:count]]
        registers = getattr(rr, "registers", None) or []
        if len(registers) < count:
            raise DeviceError("Short register response", register_type=register_type.value, address=address)
        return [int(r) for r in registers[:count]]

    def write_coil(self, address: int, value: bool, slave_id: int) -> None:
        self._exchange("write_coil", RegisterType.COIL, address, bool(value), device_id=slave_id)

    def write_register(self, address: int, value: int, slave_id: int) -> None:
        self._exchange("write_register", RegisterType.HOLDING_REGISTER, address, int(value), device_id=slave_id)

    def write_registers(self, address: int, values: Sequence[int], slave_id: int) -> None:
        self._exchange(
            "write_registers",
            RegisterType.HOLDING_REGISTER,
            address,
            [int(v) for v in values],
            device_id=slave_id,
        )


def create_transport(
    connection_type: ConnectionType,
    config: ConnectionConfig,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
) -> PymodbusTransport:
    """Default TransportFactory: a fresh pymodbus-backed transport for each connect."""
    return PymodbusTransport(connection_type, config, timeout=timeout, retries=retries)
