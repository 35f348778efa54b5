"""Registry of devices found by the latest scan."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Tuple

from ..models import Device
from .finder import DEFAULT_VENDOR_ID, scan_devices

logger = logging.getLogger(__name__)

Scanner = Callable[[int], List[Device]]


class DeviceRegistry:
    """Holds the device list and replaces it wholesale on every scan.

    Device records are never updated in place. Anything holding a Device
    from an earlier scan should re-resolve it with ``find(identity)``.

    Example:
        >>> registry = DeviceRegistry()
        >>> for device in registry.scan():
        ...     print(device.identity, device.name)
    """

    def __init__(self,
                 vendor_id: int = DEFAULT_VENDOR_ID,
                 scanner: Optional[Scanner] = None):
        """Initialize registry.

        Args:
            vendor_id: USB Vendor ID of raw devices to list
            scanner: Enumeration function (default: scan_devices)
        """
        self._vendor_id = vendor_id
        self._scanner = scanner or scan_devices
        self._devices: Tuple[Device, ...] = ()
        self._lock = threading.Lock()

    @property
    def vendor_id(self) -> int:
        return self._vendor_id

    def scan(self) -> List[Device]:
        """Enumerate again and replace the device list.

        Returns:
            The new device list (OS ports first, then raw USB devices).
        """
        try:
            devices = tuple(self._scanner(self._vendor_id))
        except Exception as e:
            logger.error(f"Device scan failed: {e}")
            devices = ()

        identities = [d.identity for d in devices]
        if len(set(identities)) != len(identities):
            logger.warning(f"Duplicate device identities in scan: {identities}")

        with self._lock:
            self._devices = devices

        logger.info(f"Found {len(devices)} device(s)")
        return list(devices)

    @property
    def devices(self) -> List[Device]:
        with self._lock:
            return list(self._devices)

    def find(self, identity: str) -> Optional[Device]:
        """Device with ``identity`` in the current list, or None."""
        with self._lock:
            for device in self._devices:
                if device.identity == identity:
                    return device
        return None
