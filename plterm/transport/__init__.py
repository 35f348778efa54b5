"""Connection backends: OS character device and USB bridge driver."""

from .base import Backend
from .bridge import BridgeBackend
from .driver import BridgeDriver
from .pl2303 import PL2303Driver, PROLIFIC_VID
from .stream import ChunkStream
from .terminal import TerminalBackend

__all__ = [
    "Backend",
    "BridgeBackend",
    "BridgeDriver",
    "ChunkStream",
    "PL2303Driver",
    "PROLIFIC_VID",
    "TerminalBackend",
]
