"""Immutable data models for devices, lines and connection state.

All models are frozen dataclasses so they can be handed across threads
(reader thread -> subscribers) without copying.
These models are the contract between the registry, the connection
controller and whatever presentation sits on top.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional, Tuple


class BaudRate(IntEnum):
    """Supported line speeds."""
    B9600 = 9600
    B19200 = 19200
    B38400 = 38400
    B57600 = 57600
    B115200 = 115200


DEFAULT_BAUD_RATE = BaudRate.B9600


class ConnectionState(Enum):
    """Lifecycle of a SerialConnection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class Device:
    """One connectable device found by a scan.

    Attributes:
        identity: Stable identifier. The port path for character devices,
            ``USB-<PID>-<serial>`` for raw USB devices without a bound driver.
            A device with no serial string gets ``USB-<PID>-Unknown-<bus>.<address>``.
        name: Human readable name for device lists.
        path: Character device path, or None if only a raw USB handle exists.
        is_prolific: Whether the device looks like a Prolific USB adapter.
        vid: USB Vendor ID, if known.
        pid: USB Product ID, if known.
        serial_number: USB serial string, if known.
    """
    identity: str
    name: str
    path: Optional[str] = None
    is_prolific: bool = False
    vid: Optional[int] = None
    pid: Optional[int] = None
    serial_number: Optional[str] = None

    @property
    def is_raw_usb(self) -> bool:
        """True if the device needs the bridge driver (no OS port)."""
        return self.path is None


@dataclass(frozen=True)
class Line:
    """A completed line of output.

    Attributes:
        text: Line content with control characters trimmed
        id: Unique id, stable for list rendering
    """
    text: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Read-only view of a SerialConnection at one instant.

    Attributes:
        state: Current lifecycle state
        device_id: Identity of the connected (or last attempted) device
        baud_rate: Line speed of the current connection
        error: Last error message, None if the last operation succeeded
        lines: Completed lines, oldest first
        current_line: Pending, not yet terminated text
    """
    state: ConnectionState
    device_id: Optional[str] = None
    baud_rate: Optional[int] = None
    error: Optional[str] = None
    lines: Tuple[Line, ...] = ()
    current_line: str = ""

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED
