#!/usr/bin/env python3
"""
Console BLE Terminal

A minimal presentation for the session controller: prints the device list
and new session log lines as they are published, and reads commands from
stdin. Use this to exercise the controller against real hardware.

Usage:
    python ble_terminal.py [config_file]

Commands:
    scan          - Start scanning (clears devices and log)
    stop          - Stop scanning (clears devices)
    list          - Show discovered devices
    connect <n>   - Connect to device number n from the list
    disconnect    - Disconnect the active device
    dismiss       - Dismiss the current error
    quit          - Exit
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

import RNS

from bleterm import create_session
from bleterm.config import load_config_file


class ConsoleView:
    """Re-renders from each published snapshot."""

    def __init__(self):
        self.devices = ()
        self.printed_lines = 0
        self.last_error = None

    def on_snapshot(self, snapshot):
        self.devices = snapshot.devices

        if len(snapshot.log_messages) < self.printed_lines:
            # Log was cleared by a new scan
            print("-" * 60)
            self.printed_lines = 0
        for line in snapshot.log_messages[self.printed_lines:]:
            print(f"  {line}")
        self.printed_lines = len(snapshot.log_messages)

        if snapshot.error.present and snapshot.error != self.last_error:
            print(f"!! Error: {snapshot.error.message} (type 'dismiss')")
        self.last_error = snapshot.error

    def show_devices(self):
        if not self.devices:
            print("No devices discovered.")
            return
        for i, device in enumerate(self.devices, 1):
            status = "connected" if device.is_connected else "-"
            print(f"{i}. {device.display_name}")
            print(f"   UUID: {device.id}")
            print(f"   RSSI: {device.signal_strength} dBm")
            print(f"   Version: {device.radio_generation}  [{status}]")


def main():
    configuration = None
    if len(sys.argv) > 1:
        configuration = load_config_file(sys.argv[1])

    RNS.loglevel = RNS.LOG_NOTICE

    print("=" * 60)
    print("BLE Terminal")
    print("=" * 60)

    view = ConsoleView()
    session = create_session(configuration)
    session.add_listener(view.on_snapshot)

    if not session.start():
        print(f"Bluetooth unavailable: {session.error_state.message}")
        session.stop()
        return 1

    try:
        for raw in sys.stdin:
            command = raw.strip().split()
            if not command:
                continue

            if command[0] == "scan":
                session.start_scanning()
            elif command[0] == "stop":
                session.stop_scanning()
            elif command[0] == "list":
                view.show_devices()
            elif command[0] == "connect" and len(command) == 2 and command[1].isdigit():
                index = int(command[1]) - 1
                if 0 <= index < len(view.devices):
                    session.connect_to_device(view.devices[index].id)
                else:
                    print(f"No device {command[1]}")
            elif command[0] == "disconnect":
                session.disconnect()
            elif command[0] == "dismiss":
                session.dismiss_error()
            elif command[0] in ("quit", "exit"):
                break
            else:
                print(__doc__)
    except KeyboardInterrupt:
        pass
    finally:
        session.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
