"""Character device backend built on pyserial.

pyserial opens the port with O_NONBLOCK, so a missing carrier cannot
hang the open call, then puts the tty in raw mode (no line discipline,
no echo, no signal characters, 8N1) with input and output speed set to
the requested baud rate.

Reads happen on a pump thread. A read that times out with no data is
"nothing yet" and is retried; a SerialException or OSError means the peer
closed or the device went away and ends the stream.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

import serial

from ..errors import OpenFailureError
from .base import Backend
from .stream import ChunkStream

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024  # bytes
READ_TIMEOUT = 0.1  # seconds, also the upper bound on cancellation latency
THREAD_JOIN_TIMEOUT = 1.0  # seconds


class TerminalBackend(Backend):
    """Backend for devices with an OS serial driver (``/dev/tty*``, ``COM*``).

    Example:
        >>> backend = TerminalBackend()
        >>> backend.open("/dev/ttyUSB0", 115200)
        >>> for text in backend.chunks():
        ...     print(text, end="")
    """

    def __init__(self,
                 timeout: float = READ_TIMEOUT,
                 chunk_size: int = READ_CHUNK_SIZE):
        """Initialize terminal backend.

        Args:
            timeout: Read timeout in seconds (retry interval when idle)
            chunk_size: Maximum bytes per read
        """
        self._timeout = timeout
        self._chunk_size = chunk_size

        self._serial: Optional[serial.Serial] = None
        self._port: Optional[str] = None
        self._stream = ChunkStream()

        self._stop = threading.Event()
        self._pump_thread: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()

    def open(self, target: str, baud_rate: int) -> None:
        """Open and configure the port, then start the pump thread.

        Raises:
            OpenFailureError: Permission denied, port busy or missing,
                or the line settings were rejected.
        """
        if self._serial is not None:
            raise OpenFailureError(f"Backend already open on {self._port}")

        self._port = target
        port = None
        try:
            port = serial.Serial(
                port=target,
                baudrate=baud_rate,
                timeout=self._timeout,
            )

            # Drop anything queued before we got here
            port.reset_input_buffer()
            port.reset_output_buffer()

        except (serial.SerialException, ValueError, OSError) as e:
            logger.error(f"Failed to open {target}: {e}")
            if port is not None:
                try:
                    port.close()
                except Exception as close_error:
                    logger.debug(f"Error closing half-open port: {close_error}")
            self._stream.finish()
            raise OpenFailureError(f"Failed to open port {target}: {e}") from e

        self._serial = port
        logger.info(f"Opened {target} @ {baud_rate} baud")
        self._start_pump_thread()

    def chunks(self) -> ChunkStream:
        return self._stream

    def write(self, text: str) -> None:
        port = self._serial
        if port is None:
            logger.warning("Cannot send, port not open")
            return

        try:
            with self._write_lock:
                port.write(text.encode("utf-8"))
        except (serial.SerialException, OSError) as e:
            logger.warning(f"Send error on {self._port}, data dropped: {e}")

    def close(self) -> None:
        self._stop.set()

        # The pump re-checks the stop flag at least every read timeout
        if (self._pump_thread and self._pump_thread.is_alive()
                and self._pump_thread is not threading.current_thread()):
            self._pump_thread.join(timeout=THREAD_JOIN_TIMEOUT)
            if self._pump_thread.is_alive():
                logger.warning("Pump thread did not stop in time")
        self._pump_thread = None

        self._stream.cancel()

        if self._serial is not None:
            try:
                self._serial.close()
            except Exception as e:
                logger.error(f"Error closing {self._port}: {e}")
            finally:
                self._serial = None
                logger.info(f"Closed {self._port}")

    @property
    def is_open(self) -> bool:
        return self._serial is not None

    # Internal methods

    def _start_pump_thread(self) -> None:
        self._stop.clear()
        self._pump_thread = threading.Thread(
            target=self._pump_loop,
            daemon=True,
            name="TerminalPump"
        )
        self._pump_thread.start()

    def _pump_loop(self) -> None:
        """Read raw bytes from the port into the chunk stream."""
        logger.debug("Pump thread started")
        port = self._serial
        error: Optional[str] = None

        while not self._stop.is_set() and port is not None:
            try:
                # Block for the first byte (up to the timeout), then take
                # whatever else is already waiting
                waiting = port.in_waiting
                data = port.read(max(1, min(waiting, self._chunk_size)))
            except (serial.SerialException, OSError) as e:
                # in_waiting is a bare ioctl and raises OSError(EIO) on hangup
                if not self._stop.is_set():
                    logger.info(f"Port {self._port} closed by peer: {e}")
                break
            except Exception as e:
                if not self._stop.is_set():
                    logger.error(f"Read error on {self._port}: {e}")
                    error = f"Read error: {e}"
                break

            if data:
                self._stream.put_bytes(data)

        self._stream.finish(error)
        logger.debug("Pump thread exiting")
