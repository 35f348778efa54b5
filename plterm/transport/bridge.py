"""Bridge-driver backend for raw USB devices.

Wraps a BridgeDriver (PL2303Driver by default) behind the Backend
interface. The driver pushes byte chunks through a callback; they are
decoded into the backend's ChunkStream.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from ..errors import DriverConnectError
from .base import Backend
from .driver import BridgeDriver
from .pl2303 import PL2303Driver
from .stream import ChunkStream

logger = logging.getLogger(__name__)

DriverFactory = Callable[[Any], BridgeDriver]


class BridgeBackend(Backend):
    """Backend for USB devices without an OS serial driver."""

    def __init__(self, driver_factory: Optional[DriverFactory] = None):
        """Initialize bridge backend.

        Args:
            driver_factory: Builds a driver for a USB device handle
                (default: PL2303Driver)
        """
        self._driver_factory = driver_factory or PL2303Driver
        self._driver: Optional[BridgeDriver] = None
        self._stream = ChunkStream()
        self._lock = threading.Lock()

    def open(self, target: Any, baud_rate: int) -> None:
        """Connect the driver and start callback delivery.

        Raises:
            DriverConnectError: If the driver rejected the connection.
        """
        if self._driver is not None:
            raise DriverConnectError("Backend already open")

        driver = None
        try:
            driver = self._driver_factory(target)
            driver.connect(baud_rate)
            with self._lock:
                self._driver = driver
            driver.start_reading(self._on_data, self._on_error)
        except Exception as e:
            logger.error(f"Bridge driver connect failed: {e}")
            with self._lock:
                self._driver = None
            if driver is not None:
                try:
                    driver.disconnect()
                except Exception as close_error:
                    logger.debug(f"Error disconnecting half-open driver: {close_error}")
            self._stream.finish()
            raise DriverConnectError(f"Driver connect failed: {e}") from e

        logger.info(f"Bridge driver connected @ {baud_rate} baud")

    def chunks(self) -> ChunkStream:
        return self._stream

    def write(self, text: str) -> None:
        driver = self._driver
        if driver is None:
            logger.warning("Cannot send, driver not connected")
            return

        try:
            driver.write(text.encode("utf-8"))
        except Exception as e:
            logger.warning(f"Bridge send error, data dropped: {e}")

    def close(self) -> None:
        # Unregister first so nothing reaches the stream after this point
        with self._lock:
            driver = self._driver
            self._driver = None
        self._stream.cancel()

        if driver is not None:
            try:
                driver.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting bridge driver: {e}")
            logger.info("Bridge driver disconnected")

    @property
    def is_open(self) -> bool:
        return self._driver is not None

    # Driver callbacks (driver thread)

    def _on_data(self, data: bytes) -> None:
        with self._lock:
            if self._driver is None:
                return
            self._stream.put_bytes(data)

    def _on_error(self, error: Exception) -> None:
        with self._lock:
            if self._driver is None:
                return
        self._stream.finish(f"Driver read error: {error}")
