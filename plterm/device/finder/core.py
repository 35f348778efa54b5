from __future__ import annotations

import logging
from typing import List, Optional, Set, Tuple

import usb.core
import usb.util
from serial.tools import list_ports

from ...errors import DeviceNotFoundError, EnumerationError
from ...models import Device
from ...transport.pl2303 import PROLIFIC_VID

logger = logging.getLogger(__name__)

DEFAULT_VENDOR_ID = PROLIFIC_VID
DEFAULT_USB_PRODUCT_NAME = "Prolific USB Device"
UNKNOWN_SERIAL = "Unknown"

# Substrings in OS port names that mark a Prolific adapter
PROLIFIC_NAME_HINTS = ("usbserial", "PL2303")

_USB_ERRORS = (usb.core.USBError, usb.core.NoBackendError, NotImplementedError, ValueError, OSError)


def usb_identity(pid: int, serial_number: Optional[str], location: Optional[str] = None) -> str:
    """
    Identity for a raw USB device: ``USB-<PID as 4 hex digits>-<serial>``.

    Adapters without a serial string all read ``Unknown``, so ``location``
    (``<bus>.<address>``) is appended in that case to keep two of them apart.
    Such an identity changes when the adapter is re-plugged.
    """
    identity = f"USB-{pid:04X}-{serial_number or UNKNOWN_SERIAL}"
    if not serial_number and location:
        identity = f"{identity}-{location}"
    return identity


def _usb_location(dev) -> Optional[str]:
    bus = getattr(dev, "bus", None)
    address = getattr(dev, "address", None)
    if bus is None or address is None:
        return None
    return f"{bus}.{address}"


def _port_to_device(port, vendor_id: int) -> Device:
    """Convert pyserial's ListPortInfo to Device."""
    path = port.device
    name = port.name or path
    text = f"{name} {port.description or ''}"
    is_prolific = (
        port.vid == vendor_id
        or any(hint.lower() in text.lower() for hint in PROLIFIC_NAME_HINTS)
    )
    return Device(
        identity=path,
        name=name,
        path=path,
        is_prolific=is_prolific,
        vid=port.vid,
        pid=port.pid,
        serial_number=port.serial_number,
    )


def _usb_string(dev, index: int) -> Optional[str]:
    """Read a USB string descriptor, None if absent or unreadable."""
    if not index:
        return None
    try:
        return usb.util.get_string(dev, index)
    except _USB_ERRORS as e:
        logger.debug(f"Cannot read string descriptor {index}: {e}")
        return None


def _has_kernel_driver(dev) -> bool:
    try:
        return bool(dev.is_kernel_driver_active(0))
    except _USB_ERRORS:
        # Not queryable here (e.g. macOS); fall back to port matching
        return False


def _is_claimed(pid: int,
                serial_number: Optional[str],
                bound: Set[Tuple[int, Optional[str]]]) -> bool:
    """Whether a character device already represents this USB device."""
    if serial_number:
        return (pid, serial_number) in bound or (pid, None) in bound
    return any(bound_pid == pid for bound_pid, _ in bound)


def find_tty_devices(vendor_id: int = DEFAULT_VENDOR_ID) -> List[Device]:
    """
    Find all serial ports the OS exposes as character devices.

    Raises:
        EnumerationError: If the port listing itself failed.
    """
    try:
        ports = list_ports.comports()
    except Exception as e:
        raise EnumerationError(f"Serial port enumeration failed: {e}") from e

    return [_port_to_device(port, vendor_id) for port in ports]


def _iter_usb(vendor_id: int):
    try:
        return list(usb.core.find(find_all=True, idVendor=vendor_id))
    except _USB_ERRORS as e:
        raise EnumerationError(f"USB enumeration failed: {e}") from e


def find_usb_devices(
    vendor_id: int = DEFAULT_VENDOR_ID,
    *,
    exclude: Optional[List[Device]] = None,
) -> List[Device]:
    """
    Find raw USB devices of ``vendor_id`` that have no OS serial driver.

    Devices with an active kernel driver, or matching (by PID and serial
    number) one of the character devices in ``exclude``, are skipped so the
    same adapter is never listed twice.

    Raises:
        EnumerationError: If USB enumeration failed (e.g. no libusb backend).
    """
    bound = {
        (d.pid, d.serial_number)
        for d in (exclude or [])
        if d.vid == vendor_id and d.pid is not None
    }
    results: List[Device] = []

    for dev in _iter_usb(vendor_id):
        pid = dev.idProduct
        serial_number = _usb_string(dev, dev.iSerialNumber)

        if _has_kernel_driver(dev) or _is_claimed(pid, serial_number, bound):
            logger.debug(f"Skipping USB {pid:04X}: bound to an OS driver")
            continue

        product = _usb_string(dev, dev.iProduct) or DEFAULT_USB_PRODUCT_NAME
        results.append(Device(
            identity=usb_identity(pid, serial_number, _usb_location(dev)),
            name=f"USB: {product} (PID: {pid:X})",
            path=None,
            is_prolific=True,
            vid=vendor_id,
            pid=pid,
            serial_number=serial_number,
        ))

    return results


def scan_devices(vendor_id: int = DEFAULT_VENDOR_ID) -> List[Device]:
    """
    Full scan: OS serial ports first, then unbound raw USB devices.

    Never raises. A failing source is logged and contributes no devices.
    """
    try:
        ttys = find_tty_devices(vendor_id)
    except EnumerationError as e:
        logger.warning(f"{e}")
        ttys = []

    try:
        raw = find_usb_devices(vendor_id, exclude=ttys)
    except EnumerationError as e:
        logger.warning(f"{e}")
        raw = []

    return ttys + raw


def find_usb_device(identity: str, vendor_id: int = DEFAULT_VENDOR_ID):
    """
    Re-resolve the current pyusb handle for a raw USB device identity.

    Handles from an earlier scan may be stale, so this enumerates again.

    Raises:
        DeviceNotFoundError: If no present device has this identity.
    """
    try:
        candidates = _iter_usb(vendor_id)
    except EnumerationError as e:
        raise DeviceNotFoundError(f"Could not find USB device {identity}: {e}") from e

    for dev in candidates:
        serial_number = _usb_string(dev, dev.iSerialNumber)
        if usb_identity(dev.idProduct, serial_number, _usb_location(dev)) == identity:
            return dev

    raise DeviceNotFoundError(f"Could not find USB device {identity}")
