"""Terminator-framed request/response over a byte channel.

Frame layout::

    request:   <command text> <tx terminator>
    response:  <reply bytes ...> <rx terminator>

There is no length prefix, so the only frame boundary is the receive
terminator. Replies are scanned one byte at a time and the frame ends as
soon as the accumulated bytes end with the encoded ``rx`` terminator.
Returned text keeps the terminator; use :func:`strip_terminator` for the
bare payload.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from ..errors import (
    ChannelIOError,
    ChannelTimeoutError,
    FrameOverflowError,
    IncompleteFrameError,
    NotOpenError,
)
from ..transport.serial_channel import Terminators

logger = logging.getLogger(__name__)


class ByteChannel(Protocol):
    """What :class:`FramedExchange` needs from a transport."""

    terminators: Terminators
    encoding: str
    is_open: bool

    def write_raw(self, data: bytes) -> int: ...

    def read_byte(self) -> int: ...


@dataclass
class ExchangeResult:
    """Outcome of one command exchange.

    ``response`` holds whatever was received, which may be a partial frame
    when ``error`` is set.
    """

    command: str
    response: str
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __repr__(self) -> str:
        status = "ok" if self.ok else f"error={self.error!r}"
        return (
            f"ExchangeResult(command={self.command!r}, "
            f"response={self.response!r}, {status})"
        )


def strip_terminator(text: str, terminator: str) -> str:
    """Remove one trailing ``terminator`` from ``text`` if present."""
    if terminator and text.endswith(terminator):
        return text[: -len(terminator)]
    return text


class FramedExchange:
    """Serialized command/response access to one channel.

    Every operation holds the exchange lock for its whole duration, so an
    interactive command and a script step can never interleave their
    terminator scans on the same channel.
    """

    def __init__(self, channel: ByteChannel) -> None:
        self._channel = channel
        self._lock = threading.Lock()

    @property
    def channel(self) -> ByteChannel:
        return self._channel

    def _encode(self, text: str) -> bytes:
        return text.encode(self._channel.encoding)

    def _decode(self, data: bytes | bytearray) -> str:
        return bytes(data).decode(self._channel.encoding, errors="replace")

    def _require_open(self) -> None:
        if not self._channel.is_open:
            raise NotOpenError("Channel is not open, unable to send")

    def _send(self, command: str) -> None:
        payload = self._encode(command + self._channel.terminators.tx)
        self._channel.write_raw(payload)
        logger.debug(">> %r", command)

    def exchange(self, command: str) -> ExchangeResult:
        """Send ``command`` and read one terminator-framed reply.

        Raises:
            NotOpenError: If the channel is not open. Nothing is written.

        Returns:
            An ``ExchangeResult``. On a transport failure ``error`` is the
            ``ChannelIOError`` and ``response`` holds the partial reply.
        """
        with self._lock:
            self._require_open()
            rx = self._encode(self._channel.terminators.rx)
            received = bytearray()
            try:
                self._send(command)
                while not received.endswith(rx):
                    received.append(self._channel.read_byte())
            except ChannelIOError as e:
                logger.debug("Exchange %r ended early: %s", command, e)
                return ExchangeResult(command, self._decode(received), e)
            return ExchangeResult(command, self._decode(received))

    def read_framed(self, buffer: bytearray) -> int:
        """Read one frame into ``buffer`` starting at index 0.

        Returns:
            Number of bytes written to ``buffer``, terminator included.

        Raises:
            NotOpenError: If the channel is not open.
            IncompleteFrameError: If the transport failed mid-frame. The
                partial bytes stay in ``buffer``.
            FrameOverflowError: If ``buffer`` filled before the terminator.
        """
        with self._lock:
            self._require_open()
            rx = self._encode(self._channel.terminators.rx)
            n = 0
            while not buffer[:n].endswith(rx):
                if n >= len(buffer):
                    raise FrameOverflowError(
                        f"Buffer of {len(buffer)} bytes filled before terminator"
                    )
                try:
                    buffer[n] = self._channel.read_byte()
                except ChannelIOError as e:
                    raise IncompleteFrameError(
                        f"Frame incomplete after {n} bytes: {e}", bytes_read=n
                    ) from e
                n += 1
            return n

    def exchange_until_idle(self, command: str) -> ExchangeResult:
        """Send ``command`` and collect everything until the line goes quiet.

        The reply ends at the first read timeout. Used for multi-line
        replies such as the ``help`` listing, where the device sends many
        terminated lines with no closing marker.
        """
        with self._lock:
            self._require_open()
            received = bytearray()
            try:
                self._send(command)
                while True:
                    received.append(self._channel.read_byte())
            except ChannelTimeoutError:
                return ExchangeResult(command, self._decode(received))
            except ChannelIOError as e:
                logger.debug("Exchange %r ended early: %s", command, e)
                return ExchangeResult(command, self._decode(received), e)
