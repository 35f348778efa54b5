"""Abstract base class for connection backends.

A Backend is one way of talking to a device: through the OS character
device, or through a bridge driver when no OS driver is bound. The
connection controller only ever sees this interface.

Key principles:
- One backend instance per connection, released exactly once by close()
- Incoming data is exposed as a ChunkStream of decoded text
- Writes are best effort and never raise
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .stream import ChunkStream


class Backend(ABC):
    """Connection backend interface.

    Backends are responsible for:
    1. Opening and configuring the underlying channel
    2. Decoding incoming bytes into a ChunkStream
    3. Sending text
    4. Releasing every resource on close

    Backends should NOT do line framing or keep display state.
    """

    @abstractmethod
    def open(self, target: Any, baud_rate: int) -> None:
        """Open the channel.

        Args:
            target: Port path or USB device handle, depending on the backend
            baud_rate: Line speed in bits per second

        Raises:
            TerminalError: If the channel could not be opened. Any partial
                setup is already released when this is raised.
        """
        pass

    @abstractmethod
    def chunks(self) -> ChunkStream:
        """Stream of decoded text chunks for the open channel."""
        pass

    @abstractmethod
    def write(self, text: str) -> None:
        """Send text, UTF-8 encoded.

        Best effort: failures are logged and dropped.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the channel and stop producing chunks.

        Should be safe to call multiple times and after a failed open.
        Should not raise.
        """
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    def __enter__(self) -> Backend:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
