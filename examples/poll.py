#!/usr/bin/env python3
"""Example: poll a register window on an interval via session events; graceful shutdown on Ctrl+C."""

import sys
import threading

from modbus_tester import ConnectionStatus, DataSample, ModbusSession, SerialConfig
from modbus_tester.errors import TransportOpenFailure


def main() -> None:
    link = SerialConfig(port="/dev/ttyUSB0", baud_rate=9600, parity="none")  # change to your port
    lost = threading.Event()

    def on_event(event: object) -> None:
        if isinstance(event, DataSample):
            print(event.values if event.success else f"read failed: {event.error}")
        elif isinstance(event, ConnectionStatus) and not event.connected:
            print(f"disconnected: {event.error}")
            lost.set()

    try:
        with ModbusSession() as session:
            session.subscribe(on_event)
            session.connect("serial", link)
            session.set_query_config(slave_id=1, start_address=0, quantity=10, register_type="input_register")
            session.set_interval(0.5)
            session.start_polling()
            print("Polling every 0.5s (Ctrl+C to stop)...")
            lost.wait()
    except KeyboardInterrupt:
        print("\nStopped.")
    except TransportOpenFailure as e:
        print(f"Could not open {link.port}: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
