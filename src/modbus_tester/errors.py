"""Exceptions for modbus-tester: connection lifecycle, device rejections and validation."""


class ModbusTesterError(Exception):
    """Base exception for modbus-tester."""

    pass


class TransportOpenFailure(ModbusTesterError):
    """Raised when the serial port or TCP socket cannot be opened."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class _TransactionError(ModbusTesterError):
    def __init__(
        self,
        message: str,
        *,
        register_type: str | None = None,
        address: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.register_type = register_type
        self.address = address
        self.cause = cause
        super().__init__(message)


class ConnectionLost(_TransactionError):
    """Raised when the link to the device breaks mid-session (reset, not connected, port gone)."""


class DeviceError(_TransactionError):
    """Raised when the device rejects a request or does not answer it in time."""

    def __init__(
        self,
        message: str,
        *,
        exception_code: int | None = None,
        register_type: str | None = None,
        address: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.exception_code = exception_code
        super().__init__(message, register_type=register_type, address=address, cause=cause)


class UnsupportedOperation(ModbusTesterError):
    """Raised when writing to a read-only register type, or packing strings outside holding registers."""

    def __init__(self, register_type: str, message: str | None = None) -> None:
        self.register_type = register_type
        super().__init__(message or f"Write operations not supported for {register_type}")


class ValidationError(ModbusTesterError, ValueError):
    """Raised for a bad address, quantity, value, setting or text before any transport call."""


class OutOfRange(ValidationError):
    """Raised when a numeric value falls outside its allowed range."""

    def __init__(self, name: str, value: object, low: int, high: int) -> None:
        self.name = name
        self.value = value
        self.low = low
        self.high = high
        super().__init__(f"{name} out of range {low}-{high}: {value!r}")


class TextTooLong(ValidationError):
    """Raised when text plus its null terminator does not fit the register block."""

    def __init__(self, length: int, max_length: int) -> None:
        self.length = length
        self.max_length = max_length
        super().__init__(
            f"Text too long: {length} characters plus terminator exceeds block of {max_length}"
        )


class EmptyText(ValidationError):
    """Raised when no text was supplied for a string write."""

    def __init__(self) -> None:
        super().__init__("Invalid text data")


class NoData(ValidationError):
    """Raised when packing produced no registers to write."""

    def __init__(self) -> None:
        super().__init__("No data to write")


class NotConnected(ModbusTesterError):
    """Raised when a device operation is attempted while disconnected."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Not connected to Modbus device")


class NoPriorConnection(ModbusTesterError):
    """Raised by reconnect() when no connection was ever configured."""

    def __init__(self) -> None:
        super().__init__("No previous connection type found")
