"""Register codec: write legality per register type and text packing into holding registers."""

from typing import Iterable

from .errors import EmptyText, NoData, OutOfRange, TextTooLong, UnsupportedOperation, ValidationError
from .types import MAX_REGISTER_VALUE, RegisterCapability, RegisterType

_WRITABLE = frozenset({RegisterType.COIL, RegisterType.HOLDING_REGISTER})


def capability(register_type: RegisterType) -> RegisterCapability:
    """Every type is readable; only coils and holding registers are writable; strings need holding registers."""
    return RegisterCapability(
        readable=True,
        writable=register_type in _WRITABLE,
        supports_strings=register_type == RegisterType.HOLDING_REGISTER,
    )


def coerce_write_value(register_type: RegisterType, value: object) -> bool | int:
    """
    Validate a single-point write and return the value to put on the wire.

    - Coils: any truthy/nonzero value becomes True.
    - Holding registers: an integer in 0..65535 (bools are rejected).

    Raises UnsupportedOperation for read-only types before anything else is checked.
    """
    if not capability(register_type).writable:
        raise UnsupportedOperation(
            register_type.value,
            f"Write operations not supported for {register_type.value}. "
            "Only coils and holding registers can be written.",
        )
    if register_type == RegisterType.COIL:
        return bool(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Holding register value must be an integer, got {value!r}")
    if not (0 <= value <= MAX_REGISTER_VALUE):
        raise OutOfRange("register value", value, 0, MAX_REGISTER_VALUE)
    return value


def encode_string(text: str | None, max_length: int) -> list[int]:
    """
    Pack text plus a null terminator into big-endian 16-bit words, two characters per register.

    max_length is the block size in characters and includes the terminator, so
    "AB" needs max_length >= 3 and packs to [0x4142, 0x0000]. An empty string
    packs to a single null register.
    """
    if text is None:
        raise EmptyText()
    if isinstance(max_length, bool) or not isinstance(max_length, int) or max_length < 1:
        raise ValidationError(f"max length must be a positive integer, got {max_length!r}")
    if len(text) + 1 > max_length:
        raise TextTooLong(len(text), max_length)
    for ch in text:
        code = ord(ch)
        # Each character occupies one byte; NUL would end the string early on decode
        if code == 0 or code > 0xFF:
            raise ValidationError(f"Character {ch!r} cannot be packed into a single byte")

    terminated = text + "\0"
    registers: list[int] = []
    for i in range(0, len(terminated), 2):
        high = ord(terminated[i])
        low = ord(terminated[i + 1]) if i + 1 < len(terminated) else 0
        registers.append((high << 8) | low)

    if not registers:
        raise NoData()
    return registers


def decode_string(registers: Iterable[int]) -> str:
    """Unpack high/low bytes into characters, stopping at the first null byte."""
    chars: list[str] = []
    for reg in registers:
        for byte in ((reg >> 8) & 0xFF, reg & 0xFF):
            if byte == 0:
                return "".join(chars)
            chars.append(chr(byte))
    return "".join(chars)
