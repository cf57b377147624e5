#!/usr/bin/env python3
"""Example: connect over Modbus TCP, read a register window, write a register and a string."""

import sys

from modbus_tester import EthernetConfig, ModbusSession, RegisterType
from modbus_tester.errors import ConnectionLost, DeviceError, TransportOpenFailure, ValidationError


def main() -> None:
    host = "192.168.1.100"  # change to your device IP
    port = 502

    try:
        with ModbusSession() as session:
            session.connect("ethernet", EthernetConfig(host=host, port=port))
            session.set_query_config(slave_id=1, start_address=0, quantity=4, register_type=RegisterType.HOLDING_REGISTER)

            # One read of the window
            sample = session.read_once().result(timeout=5)
            print(f"{sample.register_type.value}[{sample.start_address}]: {list(sample.values)}")

            # Label an address; aliases are kept per register type
            session.set_alias(2, "Setpoint")

            # Single holding register
            session.write(2, 100).result(timeout=5)
            print("Setpoint = 100")

            # Text plus null terminator, two characters per register
            registers = session.write_string(10, "PUMP-01", max_length=20).result(timeout=5)
            print(f"Wrote name into {len(registers)} registers: {[hex(r) for r in registers]}")
    except ValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        sys.exit(1)
    except (TransportOpenFailure, ConnectionLost, DeviceError) as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
