"""Connection controller: one serial session at a time.

Picks the backend for a device (character device or USB bridge driver),
runs the reader thread that feeds incoming text into the line framer and
publishes read-only snapshots to subscribers.

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
    CONNECTING -> DISCONNECTED        (open failed, error set)
    CONNECTED -> FAILED               (read error, error set)
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from .device.finder import DEFAULT_VENDOR_ID, find_usb_device
from .framer import LineFramer
from .models import (
    BaudRate,
    ConnectionSnapshot,
    ConnectionState,
    DEFAULT_BAUD_RATE,
    Device,
    Line,
)
from .transport import Backend, BridgeBackend, ChunkStream, TerminalBackend

logger = logging.getLogger(__name__)

READER_JOIN_TIMEOUT = 1.0  # seconds
DEFAULT_LINE_ENDING = "\r\n"

BackendFactory = Callable[[], Backend]
UsbResolver = Callable[[str, int], object]


class SerialConnection:
    """Owns at most one open connection and its output log.

    Responsibilities:
    - Select and open the backend for a device
    - Drain the backend's chunk stream into the LineFramer
    - Send text while connected
    - Tear everything down on disconnect, reconnect or session end
    - Notify subscribers with ConnectionSnapshot objects

    Example:
        >>> registry = DeviceRegistry()
        >>> device = registry.scan()[0]
        >>> with SerialConnection() as conn:
        ...     conn.subscribe(lambda snap: print(snap.lines[-1:]))
        ...     if conn.connect(device, BaudRate.B115200):
        ...         conn.send_line("AT")
    """

    def __init__(self,
                 vendor_id: int = DEFAULT_VENDOR_ID,
                 terminal_factory: Optional[BackendFactory] = None,
                 bridge_factory: Optional[BackendFactory] = None,
                 usb_resolver: Optional[UsbResolver] = None):
        """Initialize connection controller.

        Args:
            vendor_id: USB Vendor ID used to re-resolve raw USB devices
            terminal_factory: Builds the character device backend
            bridge_factory: Builds the bridge-driver backend
            usb_resolver: Maps (identity, vendor_id) to a current USB handle
        """
        self._vendor_id = vendor_id
        self._terminal_factory = terminal_factory or TerminalBackend
        self._bridge_factory = bridge_factory or BridgeBackend
        self._usb_resolver = usb_resolver or find_usb_device

        self._framer = LineFramer()

        self._state = ConnectionState.DISCONNECTED
        self._device_id: Optional[str] = None
        self._baud_rate: Optional[int] = None
        self._error: Optional[str] = None

        # Active connection
        self._backend: Optional[Backend] = None
        self._stream: Optional[ChunkStream] = None
        self._reader_thread: Optional[threading.Thread] = None

        # Guards the fields above and every framer write from the reader
        self._lock = threading.RLock()

        self._subscribers: List[Callable[[ConnectionSnapshot], None]] = []
        self._subscriber_lock = threading.Lock()

    # --- Lifecycle ---

    def connect(self, device: Device, baud_rate: int = DEFAULT_BAUD_RATE) -> bool:
        """Open a connection to ``device``, replacing any current one.

        Args:
            device: Device from a registry scan
            baud_rate: One of the BaudRate values

        Returns:
            True if connected. On failure ``error`` holds the reason and
            the state is DISCONNECTED.

        Raises:
            ValueError: If ``baud_rate`` is not a supported rate.
        """
        baud = BaudRate(int(baud_rate))

        self.disconnect()

        with self._lock:
            self._state = ConnectionState.CONNECTING
            self._device_id = device.identity
            self._baud_rate = int(baud)
            self._error = None
        self._notify_subscribers()

        backend: Optional[Backend] = None
        try:
            if device.path is not None:
                backend = self._terminal_factory()
                backend.open(device.path, int(baud))
            else:
                # Handles from the scan may be stale, look it up again
                handle = self._usb_resolver(device.identity, self._vendor_id)
                backend = self._bridge_factory()
                backend.open(handle, int(baud))
        except Exception as e:
            logger.error(f"Failed to connect to {device.identity}: {e}")
            if backend is not None:
                self._close_backend(backend)
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
                self._error = str(e)
            self._notify_subscribers()
            return False

        stream = backend.chunks()
        with self._lock:
            self._backend = backend
            self._stream = stream
            self._state = ConnectionState.CONNECTED
            self._reader_thread = threading.Thread(
                target=self._reader_loop,
                args=(backend, stream),
                daemon=True,
                name="SerialConnectionReader"
            )
            self._reader_thread.start()

        logger.info(f"Connected to {device.identity} @ {int(baud)} baud")
        self._notify_subscribers()
        return True

    def disconnect(self) -> None:
        """Close the active connection. No-op if already disconnected.

        Once this returns no further text from the old connection reaches
        the log. Errors while closing are logged, never raised.
        """
        with self._lock:
            backend = self._backend
            stream = self._stream
            reader = self._reader_thread
            self._backend = None
            self._stream = None
            self._reader_thread = None

            if backend is None and self._state is ConnectionState.DISCONNECTED:
                return
            self._state = ConnectionState.DISCONNECTED

        if stream is not None:
            stream.cancel()

        if (reader is not None and reader.is_alive()
                and reader is not threading.current_thread()):
            reader.join(timeout=READER_JOIN_TIMEOUT)
            if reader.is_alive():
                logger.warning("Reader thread did not stop in time")

        if backend is not None:
            self._close_backend(backend)
            logger.info(f"Disconnected from {self._device_id}")

        self._notify_subscribers()

    def close(self) -> None:
        """End the session. Alias of disconnect()."""
        self.disconnect()

    def __enter__(self) -> SerialConnection:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    # --- Data ---

    def send(self, text: str) -> None:
        """Send text as is. Ignored unless connected."""
        with self._lock:
            backend = self._backend if self._state is ConnectionState.CONNECTED else None
        if backend is None:
            logger.debug("Not connected, send ignored")
            return
        backend.write(text)

    def send_line(self, text: str, ending: str = DEFAULT_LINE_ENDING) -> None:
        """Send text followed by ``ending`` (CR LF by default)."""
        self.send(text + ending)

    def clear(self) -> None:
        """Discard the output log. The connection is left as it is."""
        self._framer.clear()
        self._notify_subscribers()

    # --- State ---

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def error(self) -> Optional[str]:
        """Last connect or read error, None after a successful connect."""
        with self._lock:
            return self._error

    @property
    def device_id(self) -> Optional[str]:
        with self._lock:
            return self._device_id

    @property
    def lines(self) -> List[Line]:
        return list(self._framer.lines)

    @property
    def current_line(self) -> str:
        return self._framer.current_line

    def snapshot(self) -> ConnectionSnapshot:
        """Consistent read-only view of state and log."""
        with self._lock:
            lines, partial = self._framer.snapshot()
            return ConnectionSnapshot(
                state=self._state,
                device_id=self._device_id,
                baud_rate=self._baud_rate,
                error=self._error,
                lines=lines,
                current_line=partial,
            )

    def subscribe(self,
                  callback: Callable[[ConnectionSnapshot], None]
                  ) -> Callable[[], None]:
        """Subscribe to state and log changes.

        The callback is invoked right away with the current snapshot, then
        after every change. It may run on the reader thread, so it should
        return quickly.

        Returns:
            Unsubscribe function
        """
        with self._subscriber_lock:
            self._subscribers.append(callback)

        try:
            callback(self.snapshot())
        except Exception as e:
            logger.error(f"Subscriber error: {e}")

        def unsubscribe():
            with self._subscriber_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # Internal methods

    def _reader_loop(self, backend: Backend, stream: ChunkStream) -> None:
        """Drain one connection's chunk stream into the framer."""
        logger.debug("Reader thread started")

        for chunk in stream:
            with self._lock:
                if self._stream is not stream:
                    break
                self._framer.feed(chunk)
            self._notify_subscribers()

        with self._lock:
            if self._stream is not stream:
                # disconnect() or a new connect() owns the teardown
                logger.debug("Reader thread exiting")
                return

            # Stream ended on its own: peer closed or read failure
            self._backend = None
            self._stream = None
            self._reader_thread = None
            if stream.error:
                self._state = ConnectionState.FAILED
                self._error = stream.error
            else:
                self._state = ConnectionState.DISCONNECTED

        if stream.error:
            logger.error(f"Connection to {self._device_id} lost: {stream.error}")
        else:
            logger.info(f"Connection to {self._device_id} closed by peer")
        self._close_backend(backend)
        self._notify_subscribers()
        logger.debug("Reader thread exiting")

    def _close_backend(self, backend: Backend) -> None:
        try:
            backend.close()
        except Exception as e:
            logger.error(f"Error closing backend: {e}")

    def _notify_subscribers(self) -> None:
        with self._subscriber_lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return

        snapshot = self.snapshot()
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Subscriber error: {e}")
