"""Shared test helpers: an in-memory byte channel with a scripted peer."""

from __future__ import annotations

from typing import Callable

from tabouli_mcp.errors import ChannelTimeoutError, NotOpenError
from tabouli_mcp.transport.serial_channel import Terminators


class FakeChannel:
    """Byte channel backed by a buffer.

    ``responder`` sees every write and returns bytes for the peer to send
    back. Once the incoming buffer is empty, reads raise ``exhausted``
    (a timeout unless told otherwise).
    """

    def __init__(
        self,
        incoming: bytes = b"",
        terminators: Terminators = Terminators(tx="\n", rx="\r\n"),
        responder: Callable[[bytes], bytes] | None = None,
        is_open: bool = True,
        encoding: str = "utf-8",
    ) -> None:
        self.terminators = terminators
        self.encoding = encoding
        self.is_open = is_open
        self.responder = responder
        self.written = bytearray()
        self.writes: list[bytes] = []
        self.incoming = bytearray(incoming)
        self.exhausted: Exception = ChannelTimeoutError("timed out")
        self.write_error: Exception | None = None
        self.reads = 0

    def feed(self, data: bytes) -> None:
        self.incoming.extend(data)

    def write_raw(self, data: bytes) -> int:
        if not self.is_open:
            raise NotOpenError("closed")
        if self.write_error is not None:
            raise self.write_error
        self.written.extend(data)
        self.writes.append(bytes(data))
        if self.responder is not None:
            self.incoming.extend(self.responder(bytes(data)))
        return len(data)

    def read_byte(self) -> int:
        if not self.is_open:
            raise NotOpenError("closed")
        self.reads += 1
        if self.incoming:
            return self.incoming.pop(0)
        raise self.exhausted


def echo_responder(terminators: Terminators) -> Callable[[bytes], bytes]:
    """Peer that answers ``cmd + tx`` with ``cmd + rx``."""
    tx = terminators.tx.encode()
    rx = terminators.rx.encode()

    def respond(data: bytes) -> bytes:
        return data[: -len(tx)] + rx

    return respond

