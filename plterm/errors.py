class TerminalError(RuntimeError):
    """Base class for errors raised by plterm."""
    pass


class EnumerationError(TerminalError):
    """Raised when one device enumeration source fails."""
    pass


class DeviceNotFoundError(TerminalError):
    """Raised when the selected device is no longer present."""
    pass


class OpenFailureError(TerminalError):
    """Raised when a character device cannot be opened or configured."""
    pass


class DriverConnectError(TerminalError):
    """Raised when the bridge driver rejects a connection."""
    pass
