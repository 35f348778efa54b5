"""Device discovery.

This module provides:
- Enumeration of OS serial ports and unbound raw USB devices (finder)
- A registry holding the result of the latest scan (DeviceRegistry)
"""

from .registry import DeviceRegistry
from .finder import (
    DEFAULT_VENDOR_ID,
    DeviceNotFoundError,
    EnumerationError,
    find_tty_devices,
    find_usb_device,
    find_usb_devices,
    scan_devices,
    usb_identity,
)

__all__ = [
    # Registry
    'DeviceRegistry',

    # Finder
    'DEFAULT_VENDOR_ID',
    'DeviceNotFoundError',
    'EnumerationError',
    'find_tty_devices',
    'find_usb_device',
    'find_usb_devices',
    'scan_devices',
    'usb_identity',
]
