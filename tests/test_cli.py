"""Tests for CLI module - value parsing and command structure."""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from modbus_tester.cli import app, format_value, parse_bool, parse_int
from modbus_tester.errors import DeviceError, TransportOpenFailure
from modbus_tester.types import ConnectionType, EthernetConfig, RegisterType, SerialConfig

runner = CliRunner()


# ============================================================================
# Value Parsing Tests
# ============================================================================


class TestParseBool:
    """Test boolean value parsing."""

    def test_true_variants(self) -> None:
        for val in ["true", "True", "1", "on", "ON", "yes"]:
            assert parse_bool(val) is True

    def test_false_variants(self) -> None:
        for val in ["false", "FALSE", "0", "off", "no", "NO"]:
            assert parse_bool(val) is False

    def test_invalid_values(self) -> None:
        """Test invalid boolean values raise ValueError."""
        with pytest.raises(ValueError, match="Invalid boolean value"):
            parse_bool("maybe")
        with pytest.raises(ValueError):
            parse_bool("")


class TestParseInt:
    """Test integer value parsing."""

    def test_decimal_and_hex(self) -> None:
        assert parse_int("0") == 0
        assert parse_int("1234") == 1234
        assert parse_int("0x4142") == 0x4142
        assert parse_int("  0xFFFF  ") == 65535

    def test_range_validation(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            parse_int("-1")
        with pytest.raises(ValueError, match="out of range"):
            parse_int("65536")

    def test_invalid_values(self) -> None:
        with pytest.raises(ValueError):
            parse_int("abc")


def test_format_value() -> None:
    """Booleans print lowercase, registers as decimal."""
    assert format_value(True) == "true"
    assert format_value(False) == "false"
    assert format_value(65535) == "65535"


# ============================================================================
# Offline Commands
# ============================================================================


def test_encode_string_command() -> None:
    result = runner.invoke(app, ["encode-string", "AB", "--max-length", "10"])

    assert result.exit_code == 0
    assert result.stdout.strip() == "0x4142 0x0000"


def test_encode_string_json() -> None:
    result = runner.invoke(app, ["encode-string", "A", "--json"])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"text": "A", "registers": [0x4100]}


def test_encode_string_too_long() -> None:
    """Text plus terminator must fit max-length."""
    result = runner.invoke(app, ["encode-string", "ABCDE", "-m", "5"])

    assert result.exit_code == 2
    assert "Invalid request" in result.output


def test_decode_string_command() -> None:
    result = runner.invoke(app, ["decode-string", "0x4142", "0x4300", "0x4444"])

    assert result.exit_code == 0
    assert result.stdout.strip() == "ABC"


def test_info_command_local() -> None:
    """Test info command without a link (local metadata only)."""
    result = runner.invoke(app, ["info", "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert "version" in data
    assert "connectivity" not in data


# ============================================================================
# Command Structure Tests (with mocked transport)
# ============================================================================


@pytest.fixture
def mock_transport() -> MagicMock:
    transport = MagicMock()
    transport.read.return_value = [10, 20, 30]
    return transport


@pytest.fixture
def mock_create_transport(mock_transport: MagicMock):
    with patch("modbus_tester.cli.create_transport", return_value=mock_transport) as factory:
        yield factory


def test_read_command(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    result = runner.invoke(app, ["read", "--host", "192.168.1.10", "--start", "100", "-q", "3", "-s", "2"])

    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["100: 10", "101: 20", "102: 30"]
    mock_transport.read.assert_called_once_with(RegisterType.HOLDING_REGISTER, 100, 3, 2)
    mock_transport.close.assert_called_once()
    args = mock_create_transport.call_args
    assert args.args == (ConnectionType.ETHERNET, EthernetConfig(host="192.168.1.10", port=502))


def test_read_command_json(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    mock_transport.read.return_value = [True, False]

    result = runner.invoke(app, ["read", "--host", "plc", "-r", "coil", "-q", "2", "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["registerType"] == "coil"
    assert data["values"] == [True, False]


def test_read_command_serial(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    result = runner.invoke(
        app,
        ["read", "-T", "serial", "-d", "/dev/ttyUSB0", "-b", "19200", "--parity", "EVEN", "-q", "3"],
    )

    assert result.exit_code == 0
    args = mock_create_transport.call_args
    assert args.args == (
        ConnectionType.SERIAL,
        SerialConfig(port="/dev/ttyUSB0", baud_rate=19200, parity="even"),
    )


def test_read_requires_host() -> None:
    result = runner.invoke(app, ["read"])

    assert result.exit_code == 2
    assert "--host is required" in result.output


def test_read_device_error_exit_code(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    mock_transport.read.side_effect = DeviceError("Illegal data address", exception_code=2)

    result = runner.invoke(app, ["read", "--host", "192.168.1.10"])

    assert result.exit_code == 3
    assert "Illegal data address" in result.output


def test_request_timeout_exit_code(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    """A request that outlives the CLI wait is a connection/Modbus error, not an unexpected one."""
    release = threading.Event()

    def slow_read(*args: object) -> list:
        release.wait(5)
        return [10, 20, 30]

    mock_transport.read.side_effect = slow_read

    with patch("modbus_tester.cli.request_timeout", return_value=0.05):
        timer = threading.Timer(0.5, release.set)
        timer.start()
        try:
            result = runner.invoke(app, ["read", "--host", "192.168.1.10", "-q", "3"])
        finally:
            release.set()
            timer.cancel()

    assert result.exit_code == 3
    assert "timed out" in result.output


def test_connect_failure_exit_code(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    mock_transport.open.side_effect = TransportOpenFailure("Failed to connect to 192.168.1.10:502")

    result = runner.invoke(app, ["read", "--host", "192.168.1.10"])

    assert result.exit_code == 3
    assert "Connection/Modbus error" in result.output
    mock_transport.read.assert_not_called()


def test_write_command_int(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    result = runner.invoke(app, ["write", "2", "100", "--host", "192.168.1.10"])

    assert result.exit_code == 0
    assert "OK: Wrote 100 to holding_register 2" in result.stdout
    mock_transport.write_register.assert_called_once_with(2, 100, 1)


def test_write_command_coil(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    result = runner.invoke(app, ["write", "5", "on", "--host", "192.168.1.10", "-r", "coil", "-s", "3"])

    assert result.exit_code == 0
    assert "OK: Wrote true to coil 5" in result.stdout
    mock_transport.write_coil.assert_called_once_with(5, True, 3)


def test_write_read_only_type_rejected(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    """Discrete inputs are rejected before any connection is made."""
    result = runner.invoke(app, ["write", "0", "1", "--host", "192.168.1.10", "-r", "discrete_input"])

    assert result.exit_code == 2
    mock_create_transport.assert_not_called()
    mock_transport.write_coil.assert_not_called()


def test_write_string_command(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    result = runner.invoke(app, ["write-string", "10", "AB", "--host", "192.168.1.10"])

    assert result.exit_code == 0
    assert "2 register(s) 10-11" in result.stdout
    mock_transport.write_registers.assert_called_once_with(10, [0x4142, 0x0000], 1)


def test_info_command_connectivity(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    result = runner.invoke(app, ["info", "--host", "192.168.1.10"])

    assert result.exit_code == 0
    assert "Connectivity: OK (ethernet 192.168.1.10)" in result.stdout


def test_poll_command_once(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    result = runner.invoke(app, ["poll", "--host", "192.168.1.10", "--start", "7", "-q", "3", "--once"])

    assert result.exit_code == 0
    assert "7=10 8=20 9=30" in result.stdout
    mock_transport.read.assert_called_once()


def test_poll_command_json_once(mock_create_transport: MagicMock, mock_transport: MagicMock) -> None:
    result = runner.invoke(app, ["poll", "--host", "192.168.1.10", "-q", "3", "--once", "--format", "json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert "timestamp" in data
    assert data["values"] == {"0": 10, "1": 20, "2": 30}


def test_poll_invalid_interval() -> None:
    result = runner.invoke(app, ["poll", "--host", "192.168.1.10", "--interval", "0"])

    assert result.exit_code == 2


def test_command_help() -> None:
    """Test that help text is available for all commands."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("info", "read", "write", "write-string", "poll", "encode-string", "decode-string"):
        assert name in result.stdout


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "modbus-tester" in result.stdout
