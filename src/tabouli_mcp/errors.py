"""Exception types raised by the transport, protocol and playback layers."""

from __future__ import annotations


class TabouliError(Exception):
    """Base class for all errors raised by this package."""


class ChannelOpenError(TabouliError, ConnectionError):
    """The serial port could not be opened (bad path, busy, permissions)."""


class NotOpenError(TabouliError):
    """An operation was attempted on a channel that is not open."""


class ChannelIOError(TabouliError, IOError):
    """A read or write failed on an open channel."""


class ChannelTimeoutError(ChannelIOError):
    """The read timeout elapsed without a byte arriving."""


class IncompleteFrameError(ChannelIOError):
    """The transport failed before the receive terminator arrived."""

    def __init__(self, message: str, bytes_read: int) -> None:
        super().__init__(message)
        self.bytes_read = bytes_read


class FrameOverflowError(TabouliError, BufferError):
    """The destination buffer filled up before the terminator was seen."""


class MalformedCatalogError(TabouliError, ValueError):
    """A help line started with the marker but could not be split."""

    def __init__(self, line: str) -> None:
        super().__init__(f"invalid command syntax: {line!r}")
        self.line = line


class ScriptBusyError(TabouliError):
    """A script run was requested while another one is in progress."""


class ScriptIndexError(TabouliError, IndexError):
    """The requested script does not exist."""


class ScriptFormatError(TabouliError, ValueError):
    """A script definition file could not be parsed."""


class ConfigError(TabouliError, ValueError):
    """The defaults file is missing required values or is unreadable."""
