"""Cancellable stream of decoded text chunks.

Both backends publish into a ChunkStream: the terminal backend from its
pump thread (pull), the bridge backend from the driver's read callback
(push). Consumers iterate it without knowing which one is behind it.
"""
from __future__ import annotations

import codecs
import queue
import threading
from typing import Iterator, Optional

_END = object()


class ChunkStream:
    """Thread-safe FIFO of text chunks with a terminal end-of-stream marker.

    Producers call ``put`` (text) or ``put_bytes`` (raw bytes, decoded as
    UTF-8 with replacement characters), then ``finish`` once. Consumers
    iterate; iteration stops after ``finish`` once queued chunks are
    drained, or immediately after ``cancel``.
    """

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._lock = threading.Lock()
        self._finished = False
        self._cancelled = False
        self._error: Optional[str] = None

    def put(self, text: str) -> bool:
        """Queue a decoded chunk.

        Returns:
            False if the stream has already finished (chunk dropped).
        """
        with self._lock:
            if self._finished:
                return False
            if text:
                self._queue.put(text)
            return True

    def put_bytes(self, data: bytes) -> bool:
        """Decode raw bytes and queue the result.

        Partial multi-byte sequences are held until the next call.
        """
        with self._lock:
            if self._finished:
                return False
            text = self._decoder.decode(data)
            if text:
                self._queue.put(text)
            return True

    def finish(self, error: Optional[str] = None) -> None:
        """Mark the end of the stream. Later calls are ignored.

        Args:
            error: Reason the producer stopped, None for an orderly end.
        """
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self._error = error
            tail = self._decoder.decode(b"", final=True)
            if tail:
                self._queue.put(tail)
            self._queue.put(_END)

    def cancel(self) -> None:
        """Finish the stream and stop consumers without draining."""
        self._cancelled = True
        self.finish()

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def error(self) -> Optional[str]:
        """Error passed to ``finish``, if any."""
        return self._error

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Next chunk, or None at end of stream.

        Raises:
            queue.Empty: If ``timeout`` elapses first.
        """
        if self._cancelled:
            return None
        item = self._queue.get(timeout=timeout)
        if item is _END or self._cancelled:
            # Leave the marker for any other consumer
            self._queue.put(_END)
            return None
        return item

    def __iter__(self) -> Iterator[str]:
        while True:
            chunk = self.get()
            if chunk is None:
                return
            yield chunk
