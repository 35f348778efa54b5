"""Prolific PL2303 bridge driver on pyusb (libusb backend).

Used when the PL2303 adapter is visible on the bus but no OS serial
driver is bound to it. Talks to the chip with vendor and CDC class
control requests and moves data over the bulk endpoints.

Requires: ``pip install pyusb`` and a libusb backend
(``apt install libusb-1.0-0`` / ``brew install libusb``).
"""
from __future__ import annotations

import logging
import struct
import threading
from typing import Optional

import usb.core
import usb.util

from .driver import BridgeDriver, DataCallback, ErrorCallback

logger = logging.getLogger(__name__)

PROLIFIC_VID = 0x067B

USB_CONFIGURATION = 1
USB_INTERFACE = 0

# Vendor requests
VENDOR_READ_REQUEST_TYPE = 0xC0
VENDOR_WRITE_REQUEST_TYPE = 0x40
VENDOR_REQUEST = 0x01

# CDC class requests
SET_LINE_REQUEST_TYPE = 0x21
SET_LINE_REQUEST = 0x20
SET_CONTROL_REQUEST_TYPE = 0x21
SET_CONTROL_REQUEST = 0x22
CONTROL_DTR = 0x01
CONTROL_RTS = 0x02

STOP_BITS_1 = 0
PARITY_NONE = 0
DATA_BITS_8 = 8

CONTROL_TIMEOUT_MS = 1000
READ_TIMEOUT_MS = 100  # also the upper bound on stop latency
WRITE_TIMEOUT_MS = 1000
THREAD_JOIN_TIMEOUT = 1.0  # seconds

# (request type, value, index) steps of the chip start-up handshake
STARTUP_SEQUENCE = (
    (VENDOR_READ_REQUEST_TYPE, 0x8484, 0),
    (VENDOR_WRITE_REQUEST_TYPE, 0x0404, 0),
    (VENDOR_READ_REQUEST_TYPE, 0x8484, 0),
    (VENDOR_READ_REQUEST_TYPE, 0x8383, 0),
    (VENDOR_READ_REQUEST_TYPE, 0x8484, 0),
    (VENDOR_WRITE_REQUEST_TYPE, 0x0404, 1),
    (VENDOR_READ_REQUEST_TYPE, 0x8484, 0),
    (VENDOR_READ_REQUEST_TYPE, 0x8383, 0),
    (VENDOR_WRITE_REQUEST_TYPE, 0x0000, 1),
    (VENDOR_WRITE_REQUEST_TYPE, 0x0001, 0),
    (VENDOR_WRITE_REQUEST_TYPE, 0x0002, 0x44),
)


def line_coding(baud_rate: int) -> bytes:
    """CDC SET_LINE_CODING payload for 8N1 at ``baud_rate``."""
    return struct.pack("<IBBB", baud_rate, STOP_BITS_1, PARITY_NONE, DATA_BITS_8)


def _is_bulk(endpoint, direction: int) -> bool:
    return (usb.util.endpoint_type(endpoint.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK
            and usb.util.endpoint_direction(endpoint.bEndpointAddress) == direction)


class PL2303Driver(BridgeDriver):
    """pyusb driver for one PL2303 device.

    Args:
        device: ``usb.core.Device`` handle from a fresh enumeration
    """

    def __init__(self, device):
        self._device = device
        self._ep_in = None
        self._ep_out = None
        self._claimed = False

        self._callback: Optional[DataCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._stop = threading.Event()
        self._reader_thread: Optional[threading.Thread] = None

    @property
    def is_connected(self) -> bool:
        return self._claimed

    def connect(self, baud_rate: int) -> None:
        dev = self._device
        try:
            try:
                if dev.is_kernel_driver_active(USB_INTERFACE):
                    dev.detach_kernel_driver(USB_INTERFACE)
            except NotImplementedError:
                # Not supported by this libusb backend / platform
                pass

            dev.set_configuration(USB_CONFIGURATION)
            usb.util.claim_interface(dev, USB_INTERFACE)
            self._claimed = True

            intf = dev.get_active_configuration()[(USB_INTERFACE, 0)]
            self._ep_in = usb.util.find_descriptor(
                intf, custom_match=lambda e: _is_bulk(e, usb.util.ENDPOINT_IN))
            self._ep_out = usb.util.find_descriptor(
                intf, custom_match=lambda e: _is_bulk(e, usb.util.ENDPOINT_OUT))
            if self._ep_in is None or self._ep_out is None:
                raise usb.core.USBError("PL2303 bulk endpoints not found")

            for request_type, value, index in STARTUP_SEQUENCE:
                if request_type == VENDOR_READ_REQUEST_TYPE:
                    dev.ctrl_transfer(request_type, VENDOR_REQUEST, value, index, 1,
                                      timeout=CONTROL_TIMEOUT_MS)
                else:
                    dev.ctrl_transfer(request_type, VENDOR_REQUEST, value, index,
                                      timeout=CONTROL_TIMEOUT_MS)

            dev.ctrl_transfer(SET_LINE_REQUEST_TYPE, SET_LINE_REQUEST, 0, 0,
                              line_coding(baud_rate), timeout=CONTROL_TIMEOUT_MS)
            dev.ctrl_transfer(SET_CONTROL_REQUEST_TYPE, SET_CONTROL_REQUEST,
                              CONTROL_DTR | CONTROL_RTS, 0, timeout=CONTROL_TIMEOUT_MS)
        except Exception:
            self._release()
            raise

        logger.info(f"PL2303 configured @ {baud_rate} baud")

    def start_reading(self,
                      callback: DataCallback,
                      on_error: Optional[ErrorCallback] = None) -> None:
        if not self._claimed:
            raise usb.core.USBError("PL2303 not connected")

        self._callback = callback
        self._on_error = on_error
        if self._reader_thread and self._reader_thread.is_alive():
            return

        self._stop.clear()
        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            daemon=True,
            name="PL2303Reader"
        )
        self._reader_thread.start()

    def write(self, data: bytes) -> None:
        if not self._claimed or self._ep_out is None:
            logger.warning("Cannot send, PL2303 not connected")
            return
        self._ep_out.write(data, timeout=WRITE_TIMEOUT_MS)

    def disconnect(self) -> None:
        self._stop.set()
        if (self._reader_thread and self._reader_thread.is_alive()
                and self._reader_thread is not threading.current_thread()):
            self._reader_thread.join(timeout=THREAD_JOIN_TIMEOUT)
        self._reader_thread = None
        self._callback = None
        self._on_error = None

        if self._claimed:
            try:
                self._device.ctrl_transfer(SET_CONTROL_REQUEST_TYPE, SET_CONTROL_REQUEST,
                                           0, 0, timeout=CONTROL_TIMEOUT_MS)
            except usb.core.USBError as e:
                logger.debug(f"Could not drop DTR/RTS: {e}")
        self._release()

    # Internal methods

    def _release(self) -> None:
        if self._claimed:
            try:
                usb.util.release_interface(self._device, USB_INTERFACE)
            except usb.core.USBError as e:
                logger.debug(f"Error releasing interface: {e}")
            self._claimed = False
        try:
            usb.util.dispose_resources(self._device)
        except usb.core.USBError as e:
            logger.debug(f"Error disposing device: {e}")
        self._ep_in = None
        self._ep_out = None

    def _reader_loop(self) -> None:
        logger.debug("PL2303 reader thread started")
        ep_in = self._ep_in
        size = ep_in.wMaxPacketSize

        while not self._stop.is_set():
            try:
                data = ep_in.read(size, timeout=READ_TIMEOUT_MS)
            except usb.core.USBTimeoutError:
                continue
            except usb.core.USBError as e:
                if not self._stop.is_set():
                    logger.error(f"PL2303 read error: {e}")
                    on_error = self._on_error
                    if on_error is not None:
                        on_error(e)
                break

            callback = self._callback
            if data and callback is not None:
                try:
                    callback(bytes(data))
                except Exception as e:
                    logger.error(f"Error in data callback: {e}")

        logger.debug("PL2303 reader thread exiting")
