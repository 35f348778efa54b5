"""Contract for bridge drivers.

A bridge driver speaks a USB serial chip's own protocol directly, for
devices that have no OS serial driver bound. The bridge backend only
relies on the four operations below.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional

DataCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


class BridgeDriver(ABC):
    """Native driver for one USB bridge device."""

    @abstractmethod
    def connect(self, baud_rate: int) -> None:
        """Claim the device and program the line settings.

        Raises:
            Exception: Any failure. The bridge backend wraps it.
        """
        pass

    @abstractmethod
    def start_reading(self,
                      callback: DataCallback,
                      on_error: Optional[ErrorCallback] = None) -> None:
        """Start delivering received bytes to ``callback``.

        ``callback`` runs on a driver-owned thread. ``on_error`` is called
        once if reading stops because of a transfer error.
        """
        pass

    @abstractmethod
    def write(self, data: bytes) -> None:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Stop reading and release the device. Safe to call twice."""
        pass
