from .core import (
    DEFAULT_VENDOR_ID,
    find_tty_devices,
    find_usb_device,
    find_usb_devices,
    scan_devices,
    usb_identity,
)
from ...errors import DeviceNotFoundError, EnumerationError

__all__ = [
    "DEFAULT_VENDOR_ID",
    "find_tty_devices",
    "find_usb_device",
    "find_usb_devices",
    "scan_devices",
    "usb_identity",
    "DeviceNotFoundError",
    "EnumerationError",
]
