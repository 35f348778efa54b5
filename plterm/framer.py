"""Line framing for the incoming text stream.

Turns an arbitrarily chunked stream of decoded text into completed lines
plus one pending partial line.
"""
import logging
import threading
import unicodedata
from typing import List, Tuple

from .models import Line

logger = logging.getLogger(__name__)

LINE_TERMINATOR = "\n"

# Unicode "Other, control" and "Other, format"
_CONTROL_CATEGORIES = ("Cc", "Cf")


def _is_control(char: str) -> bool:
    return unicodedata.category(char) in _CONTROL_CATEGORIES


def trim_control(text: str) -> str:
    """Strip leading and trailing control characters (\\r, \\x00, ESC, ...).

    Interior control characters and ordinary whitespace are kept.
    """
    start = 0
    end = len(text)
    while start < end and _is_control(text[start]):
        start += 1
    while end > start and _is_control(text[end - 1]):
        end -= 1
    return text[start:end]


class LineFramer:
    """Thread-safe line assembler.

    Only ``\\n`` terminates a line. A bare ``\\r`` stays in the partial
    buffer and is trimmed once its line completes. Lines that are empty
    after trimming are not emitted.
    """

    def __init__(self):
        self._lines: List[Line] = []
        self._partial = ""
        self._lock = threading.Lock()

    def feed(self, chunk: str) -> List[Line]:
        """Append a text chunk and extract every completed line.

        Args:
            chunk: Decoded text, any length, any split point.

        Returns:
            Lines completed by this chunk (already appended to ``lines``).
        """
        if not chunk:
            return []

        completed: List[Line] = []
        with self._lock:
            self._partial += chunk

            while True:
                idx = self._partial.find(LINE_TERMINATOR)
                if idx == -1:
                    break

                text = trim_control(self._partial[:idx])
                if text:
                    completed.append(Line(text=text))

                # Drop the line and its terminator
                self._partial = self._partial[idx + 1:]

            self._lines.extend(completed)

        return completed

    def clear(self) -> None:
        """Discard all completed lines and the partial buffer."""
        with self._lock:
            self._lines.clear()
            self._partial = ""

    @property
    def lines(self) -> Tuple[Line, ...]:
        with self._lock:
            return tuple(self._lines)

    @property
    def current_line(self) -> str:
        """Pending text not yet terminated by a newline."""
        with self._lock:
            return self._partial

    def snapshot(self) -> Tuple[Tuple[Line, ...], str]:
        """Lines and partial buffer read under one lock."""
        with self._lock:
            return tuple(self._lines), self._partial
