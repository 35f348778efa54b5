"""plterm - serial port and PL2303 bridge terminal core."""

from .connection import SerialConnection
from .device import DeviceRegistry, scan_devices
from .errors import (
    DeviceNotFoundError,
    DriverConnectError,
    EnumerationError,
    OpenFailureError,
    TerminalError,
)
from .framer import LineFramer
from .models import (
    BaudRate,
    ConnectionSnapshot,
    ConnectionState,
    Device,
    Line,
)

__all__ = [
    "SerialConnection",
    "DeviceRegistry",
    "scan_devices",
    "LineFramer",
    "BaudRate",
    "ConnectionSnapshot",
    "ConnectionState",
    "Device",
    "Line",
    "TerminalError",
    "EnumerationError",
    "DeviceNotFoundError",
    "OpenFailureError",
    "DriverConnectError",
]
