#!/usr/bin/env python3
"""Command-line front end for modbus-tester using Typer."""

import functools
import json
import logging
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .codec import capability, decode_string, encode_string
from .config import SessionConfig
from .errors import (
    ConnectionLost,
    DeviceError,
    NotConnected,
    TransportOpenFailure,
    UnsupportedOperation,
)
from .events import ConnectionStatus, DataSample
from .session import ModbusSession
from .transport import create_transport
from .types import ConnectionType, EthernetConfig, RegisterType, Sample, SerialConfig

app = typer.Typer(
    name="mbtest",
    help="Exercise a Modbus RTU/TCP device: read, poll, write and pack strings into holding registers.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

TypeOption = Annotated[
    str,
    typer.Option("--type", "-T", help="Connection type: ethernet or serial", envvar="MODBUS_TESTER_TYPE"),
]
HostOption = Annotated[
    Optional[str],
    typer.Option("--host", "-h", help="Device hostname or IP address", envvar="MODBUS_TESTER_HOST"),
]
PortOption = Annotated[
    int,
    typer.Option("--port", "-p", help="Modbus TCP port", envvar="MODBUS_TESTER_PORT"),
]
DeviceOption = Annotated[
    Optional[str],
    typer.Option("--device", "-d", help="Serial port (e.g. /dev/ttyUSB0, COM3)", envvar="MODBUS_TESTER_DEVICE"),
]
BaudOption = Annotated[
    int,
    typer.Option("--baudrate", "-b", help="Serial baud rate", envvar="MODBUS_TESTER_BAUDRATE"),
]
DataBitsOption = Annotated[
    int,
    typer.Option("--data-bits", help="Serial data bits", envvar="MODBUS_TESTER_DATA_BITS"),
]
StopBitsOption = Annotated[
    int,
    typer.Option("--stop-bits", help="Serial stop bits", envvar="MODBUS_TESTER_STOP_BITS"),
]
ParityOption = Annotated[
    str,
    typer.Option("--parity", help="Serial parity: none, even, odd", envvar="MODBUS_TESTER_PARITY"),
]
SlaveIdOption = Annotated[
    int,
    typer.Option("--slave-id", "-s", help="Modbus slave (unit) ID", envvar="MODBUS_TESTER_SLAVE_ID"),
]
RegisterTypeOption = Annotated[
    str,
    typer.Option(
        "--register-type",
        "-r",
        help="coil, discrete_input, input_register or holding_register",
        envvar="MODBUS_TESTER_REGISTER_TYPE",
    ),
]
StartOption = Annotated[
    int,
    typer.Option("--start", help="First address of the read window"),
]
QuantityOption = Annotated[
    int,
    typer.Option("--quantity", "-q", help="Number of coils/registers to read"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Per-request timeout in seconds", envvar="MODBUS_TESTER_TIMEOUT"),
]
RetriesOption = Annotated[
    int,
    typer.Option("--retries", help="Number of retries on failure", envvar="MODBUS_TESTER_RETRIES"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@contextmanager
def cli_errors(verbose: bool) -> Iterator[None]:
    """Map session errors to exit codes: 2 bad input, 3 connection/Modbus, 4 unexpected."""
    try:
        yield
    except typer.Exit:
        raise
    except (ValueError, UnsupportedOperation) as e:
        typer.echo(f"Error: Invalid request: {e}", err=True)
        raise typer.Exit(2)
    except (TransportOpenFailure, ConnectionLost, DeviceError, NotConnected) as e:
        typer.echo(f"Error: Connection/Modbus error: {e}", err=True)
        raise typer.Exit(3)
    # FutureTimeoutError is a distinct class before Python 3.11
    except (TimeoutError, FutureTimeoutError):
        typer.echo("Error: Connection/Modbus error: request timed out", err=True)
        raise typer.Exit(3)
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(4)


def create_session(
    connection_type: str,
    host: Optional[str],
    port: int,
    device: Optional[str],
    baudrate: int,
    data_bits: int,
    stop_bits: int,
    parity: str,
    timeout: float,
    retries: int,
) -> tuple[ModbusSession, ConnectionType]:
    """Build a session whose stored settings target the requested link."""
    ctype = ConnectionType.parse(connection_type)
    if ctype == ConnectionType.ETHERNET and not host:
        typer.echo("Error: --host is required for ethernet connections", err=True)
        raise typer.Exit(2)
    if ctype == ConnectionType.SERIAL and not device:
        typer.echo("Error: --device is required for serial connections", err=True)
        raise typer.Exit(2)
    config = SessionConfig(connection_type=ctype)
    if ctype == ConnectionType.ETHERNET:
        config.ethernet = EthernetConfig(host=host or "", port=port)
    else:
        config.serial = SerialConfig(
            port=device or "",
            baud_rate=baudrate,
            data_bits=data_bits,
            stop_bits=stop_bits,
            parity=parity.lower(),
        )
    session = ModbusSession(
        config,
        transport_factory=functools.partial(create_transport, timeout=timeout, retries=retries),
    )
    return session, ctype


def request_timeout(timeout: float, retries: int) -> float:
    """How long to wait on a queued request before giving up on it."""
    return timeout * (retries + 1) + 1.0


def parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    v = value.lower().strip()
    if v in ("true", "1", "on", "yes"):
        return True
    if v in ("false", "0", "off", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_int(value: str) -> int:
    """Parse an unsigned 16-bit integer, decimal or 0x hex."""
    v = value.strip()
    num = int(v, 16) if v.lower().startswith("0x") else int(v)
    if not (0 <= num <= 65535):
        raise ValueError(f"Unsigned 16-bit integer out of range: {num}")
    return num


def format_value(value: bool | int) -> str:
    """Format value for display."""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def format_sample(sample: Sample | DataSample, output: str) -> str:
    """One poll line: text is 'timestamp addr=value ...', json is one object per line."""
    if output == "json":
        return json.dumps(
            {
                "timestamp": sample.timestamp.isoformat(),
                "registerType": sample.register_type.value,
                "values": {
                    str(sample.start_address + i): v for i, v in enumerate(sample.values)
                },
            }
        )
    pairs = " ".join(
        f"{sample.start_address + i}={format_value(v)}" for i, v in enumerate(sample.values)
    )
    return f"{sample.timestamp.isoformat()} {pairs}"


# ============================================================================
# Commands
# ============================================================================

@app.command()
def info(
    connection_type: TypeOption = "ethernet",
    host: HostOption = None,
    port: PortOption = 502,
    device: DeviceOption = None,
    baudrate: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = "none",
    timeout: TimeoutOption = 3.0,
    retries: RetriesOption = 1,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show package version and, when a link is given, test that it opens.

    Without --host/--device: shows local metadata only.
    """
    setup_logging(verbose)

    info_data: dict = {"version": __version__}

    if host or device:
        with cli_errors(verbose):
            session, ctype = create_session(
                connection_type, host, port, device, baudrate, data_bits, stop_bits, parity, timeout, retries
            )
        target = host if ctype == ConnectionType.ETHERNET else device
        try:
            with session:
                session.connect(ctype)
            info_data["connectivity"] = {"status": "connected", "type": ctype.value, "target": target}
        except TransportOpenFailure as e:
            info_data["connectivity"] = {"status": "failed", "type": ctype.value, "target": target, "error": str(e)}

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"modbus-tester version: {info_data['version']}")
        if "connectivity" in info_data:
            conn = info_data["connectivity"]
            if conn["status"] == "connected":
                typer.echo(f"Connectivity: OK ({conn['type']} {conn['target']})")
            else:
                typer.echo(f"Connectivity: FAILED ({conn['type']} {conn['target']}): {conn['error']}")


@app.command()
def read(
    connection_type: TypeOption = "ethernet",
    host: HostOption = None,
    port: PortOption = 502,
    device: DeviceOption = None,
    baudrate: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = "none",
    slave_id: SlaveIdOption = 1,
    register_type: RegisterTypeOption = "holding_register",
    start: StartOption = 0,
    quantity: QuantityOption = 10,
    timeout: TimeoutOption = 3.0,
    retries: RetriesOption = 1,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Read one window of coils or registers and print one address per line.
    """
    setup_logging(verbose)

    with cli_errors(verbose):
        session, ctype = create_session(
            connection_type, host, port, device, baudrate, data_bits, stop_bits, parity, timeout, retries
        )
        with session:
            session.set_query_config(
                slave_id=slave_id, start_address=start, quantity=quantity, register_type=register_type
            )
            session.connect(ctype)
            sample = session.read_once().result(timeout=request_timeout(timeout, retries))

        if json_output:
            typer.echo(
                json.dumps(
                    {
                        "timestamp": sample.timestamp.isoformat(),
                        "registerType": sample.register_type.value,
                        "startAddress": sample.start_address,
                        "values": list(sample.values),
                    }
                )
            )
        else:
            for i, value in enumerate(sample.values):
                typer.echo(f"{sample.start_address + i}: {format_value(value)}")


@app.command()
def write(
    address: Annotated[int, typer.Argument(help="Coil or holding register address")],
    value: Annotated[str, typer.Argument(help="Value (bool: true/false/1/0/on/off/yes/no; int: decimal or 0x hex)")],
    connection_type: TypeOption = "ethernet",
    host: HostOption = None,
    port: PortOption = 502,
    device: DeviceOption = None,
    baudrate: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = "none",
    slave_id: SlaveIdOption = 1,
    register_type: RegisterTypeOption = "holding_register",
    timeout: TimeoutOption = 3.0,
    retries: RetriesOption = 1,
    verbose: VerboseOption = False,
) -> None:
    """
    Write a single coil or holding register.

    Discrete inputs and input registers are read-only and are rejected before connecting.
    """
    setup_logging(verbose)

    with cli_errors(verbose):
        rtype = RegisterType.parse(register_type)
        if not capability(rtype).writable:
            raise UnsupportedOperation(rtype.value)
        parsed: bool | int = parse_bool(value) if rtype == RegisterType.COIL else parse_int(value)
        session, ctype = create_session(
            connection_type, host, port, device, baudrate, data_bits, stop_bits, parity, timeout, retries
        )
        with session:
            session.set_query_config(slave_id=slave_id, register_type=rtype)
            session.connect(ctype)
            written = session.write(address, parsed).result(timeout=request_timeout(timeout, retries))
        typer.echo(f"OK: Wrote {format_value(written)} to {rtype.value} {address}")


@app.command(name="write-string")
def write_string(
    address: Annotated[int, typer.Argument(help="First holding register of the string block")],
    text: Annotated[str, typer.Argument(help="Text to write (one byte per character)")],
    max_length: Annotated[int, typer.Option("--max-length", "-m", help="Block size in characters, terminator included")] = 20,
    connection_type: TypeOption = "ethernet",
    host: HostOption = None,
    port: PortOption = 502,
    device: DeviceOption = None,
    baudrate: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = "none",
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 3.0,
    retries: RetriesOption = 1,
    verbose: VerboseOption = False,
) -> None:
    """
    Write text plus a null terminator into holding registers, two characters per register.
    """
    setup_logging(verbose)

    with cli_errors(verbose):
        # Validate before touching the link
        encode_string(text, max_length)
        session, ctype = create_session(
            connection_type, host, port, device, baudrate, data_bits, stop_bits, parity, timeout, retries
        )
        with session:
            session.set_query_config(slave_id=slave_id, register_type=RegisterType.HOLDING_REGISTER)
            session.connect(ctype)
            registers = session.write_string(address, text, max_length).result(
                timeout=request_timeout(timeout, retries)
            )
        end = address + len(registers) - 1
        typer.echo(f"OK: Wrote {text!r} with terminator to {len(registers)} register(s) {address}-{end}")


@app.command()
def poll(
    connection_type: TypeOption = "ethernet",
    host: HostOption = None,
    port: PortOption = 502,
    device: DeviceOption = None,
    baudrate: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = "none",
    slave_id: SlaveIdOption = 1,
    register_type: RegisterTypeOption = "holding_register",
    start: StartOption = 0,
    quantity: QuantityOption = 10,
    timeout: TimeoutOption = 3.0,
    retries: RetriesOption = 1,
    verbose: VerboseOption = False,
    interval: Annotated[float, typer.Option("--interval", "-i", help="Polling interval in seconds")] = 1.0,
    once: Annotated[bool, typer.Option("--once", help="Poll once and exit")] = False,
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: text, json")] = "text",
) -> None:
    """
    Continuously read a window at a fixed interval.

    Outputs format:
    - text: timestamp + address=value pairs (default)
    - json: NDJSON with {"timestamp": "...", "values": {...}} per line

    Device errors are reported and polling continues; a lost connection ends the command.
    Press Ctrl+C to stop gracefully.
    """
    setup_logging(verbose)

    if format not in ("text", "json"):
        typer.echo(f"Error: Invalid format '{format}'. Must be text or json.", err=True)
        raise typer.Exit(2)

    if interval <= 0:
        typer.echo(f"Error: Interval must be positive, got {interval}", err=True)
        raise typer.Exit(2)

    lost: list[str] = []
    stopped = threading.Event()

    def on_event(event: object) -> None:
        if isinstance(event, DataSample):
            if event.success:
                typer.echo(format_sample(event, format))
            else:
                typer.echo(f"Error: Read failed: {event.error}", err=True)
        elif isinstance(event, ConnectionStatus) and not event.connected and event.error:
            lost.append(event.error)
            stopped.set()

    with cli_errors(verbose):
        session, ctype = create_session(
            connection_type, host, port, device, baudrate, data_bits, stop_bits, parity, timeout, retries
        )
        with session:
            session.set_query_config(
                slave_id=slave_id, start_address=start, quantity=quantity, register_type=register_type
            )
            session.set_interval(interval)
            session.connect(ctype)
            if once:
                sample = session.read_once().result(timeout=request_timeout(timeout, retries))
                typer.echo(format_sample(sample, format))
                return
            session.subscribe(on_event)
            session.start_polling()
            while not stopped.wait(0.5):
                pass

        typer.echo(f"Error: Connection/Modbus error: {lost[0]}", err=True)
        raise typer.Exit(3)


@app.command(name="encode-string")
def encode_string_cmd(
    text: Annotated[str, typer.Argument(help="Text to pack")],
    max_length: Annotated[int, typer.Option("--max-length", "-m", help="Block size in characters, terminator included")] = 20,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show the holding register words a string write would send. No connection needed.
    """
    setup_logging(verbose)

    with cli_errors(verbose):
        registers = encode_string(text, max_length)

    if json_output:
        typer.echo(json.dumps({"text": text, "registers": registers}))
    else:
        typer.echo(" ".join(f"0x{r:04X}" for r in registers))


@app.command(name="decode-string")
def decode_string_cmd(
    registers: Annotated[list[str], typer.Argument(help="Register words (decimal or 0x hex)")],
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Unpack register words into text, stopping at the first null byte. No connection needed.
    """
    setup_logging(verbose)

    with cli_errors(verbose):
        words = [parse_int(r) for r in registers]
        text = decode_string(words)

    if json_output:
        typer.echo(json.dumps({"registers": words, "text": text}))
    else:
        typer.echo(text)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"modbus-tester {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """mbtest - exercise a Modbus RTU/TCP device from the command line."""
    pass


if __name__ == "__main__":
    app()
