#!/usr/bin/env python3
"""
Interactive serial terminal.

Lists serial ports and unbound PL2303 adapters, connects to the one you
pick and prints every completed line. Typed input is sent with CR LF.

Commands: /clear, /rescan, /quit
"""

import sys
import logging
import threading
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from plterm import BaudRate, DeviceRegistry, SerialConnection

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def choose_device(registry):
    devices = registry.scan()
    if not devices:
        print("No devices found.")
        return None

    print("\nDevices:")
    for idx, device in enumerate(devices, 1):
        kind = device.path or "user-space driver"
        print(f"  {idx}. {device.name}  [{kind}]")

    choice = input("Select device number: ").strip()
    if not choice.isdigit() or not 1 <= int(choice) <= len(devices):
        print("Invalid selection.")
        return None
    return devices[int(choice) - 1]


def choose_baud():
    rates = ", ".join(str(int(b)) for b in BaudRate)
    choice = input(f"Baud rate ({rates}) [9600]: ").strip() or "9600"
    try:
        return BaudRate(int(choice))
    except ValueError:
        print("Unsupported baud rate, using 9600.")
        return BaudRate.B9600


def main():
    registry = DeviceRegistry()
    device = choose_device(registry)
    if device is None:
        return

    printed = {"count": 0}
    print_lock = threading.Lock()

    def on_change(snapshot):
        with print_lock:
            # Log was cleared
            if len(snapshot.lines) < printed["count"]:
                printed["count"] = 0
            for line in snapshot.lines[printed["count"]:]:
                print(f"< {line.text}")
            printed["count"] = len(snapshot.lines)

    with SerialConnection(vendor_id=registry.vendor_id) as conn:
        conn.subscribe(on_change)

        if not conn.connect(device, choose_baud()):
            print(f"Failed to connect: {conn.error}")
            return
        print("Connected. Type to send, /quit to exit.")

        try:
            while True:
                text = input()
                if text == "/quit":
                    break
                if text == "/clear":
                    conn.clear()
                    continue
                if text == "/rescan":
                    for d in registry.scan():
                        print(f"  {d.identity}: {d.name}")
                    continue
                if not conn.is_connected:
                    print(f"Not connected ({conn.error or 'closed by peer'}).")
                    continue
                conn.send_line(text)
        except (KeyboardInterrupt, EOFError):
            print("\nInterrupted by user.")

    print("Done.")


if __name__ == "__main__":
    main()
