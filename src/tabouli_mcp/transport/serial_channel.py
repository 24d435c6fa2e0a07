"""Serial line connection to the device.

Wraps a pyserial port behind two primitives, :meth:`SerialChannel.write_raw`
and :meth:`SerialChannel.read_byte`. Framing lives one layer up in
:mod:`tabouli_mcp.protocol.framing`.

``port`` may be a device path (``/dev/ttyUSB0``, ``COM3``) or any pyserial
URL; ``loop://`` gives a loopback port that echoes every write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import serial

from ..errors import (
    ChannelIOError,
    ChannelOpenError,
    ChannelTimeoutError,
    NotOpenError,
)

logger = logging.getLogger(__name__)

DEFAULT_BAUD_RATE = 9600
DEFAULT_DATA_BITS = 8
DEFAULT_STOP_BITS = 1
DEFAULT_PARITY = "N"
DEFAULT_TIMEOUT_S = 1.0
DEFAULT_ENCODING = "utf-8"

# Map string parity values to pyserial constants
PARITY_MAP = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
    "M": serial.PARITY_MARK,
    "S": serial.PARITY_SPACE,
}

STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    1.5: serial.STOPBITS_ONE_POINT_FIVE,
    2: serial.STOPBITS_TWO,
}

BYTESIZE_MAP = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


@dataclass(frozen=True)
class TransportConfig:
    """Line settings for one serial port."""

    port: str
    baud_rate: int = DEFAULT_BAUD_RATE
    data_bits: int = DEFAULT_DATA_BITS
    stop_bits: float = DEFAULT_STOP_BITS
    parity: str = DEFAULT_PARITY
    timeout: float = DEFAULT_TIMEOUT_S

    def __post_init__(self) -> None:
        if self.parity not in PARITY_MAP:
            raise ValueError(
                f"Parity must be one of {list(PARITY_MAP)}, got {self.parity!r}"
            )
        if self.data_bits not in BYTESIZE_MAP:
            raise ValueError(
                f"Data bits must be one of {list(BYTESIZE_MAP)}, got {self.data_bits}"
            )
        if self.stop_bits not in STOPBITS_MAP:
            raise ValueError(
                f"Stop bits must be one of {list(STOPBITS_MAP)}, got {self.stop_bits}"
            )


@dataclass(frozen=True)
class Terminators:
    """Frame terminators: ``tx`` is appended to writes, ``rx`` ends a reply."""

    tx: str
    rx: str

    def __post_init__(self) -> None:
        for label, value in (("tx", self.tx), ("rx", self.rx)):
            if not isinstance(value, str) or not value:
                raise ValueError(f"{label} terminator must be a non-empty string")


class SerialChannel:
    """Owns one serial port and its terminator pair.

    Usage::

        channel = SerialChannel(TransportConfig("/dev/ttyUSB0"), Terminators("\\n", "\\r\\n"))
        channel.open()
        channel.write_raw(b"help\\n")
        first = channel.read_byte()
        channel.close()
    """

    def __init__(
        self,
        config: TransportConfig,
        terminators: Terminators,
        encoding: str = DEFAULT_ENCODING,
    ) -> None:
        self._config = config
        self._terminators = terminators
        self._encoding = encoding
        self._port: serial.SerialBase | None = None

    @property
    def config(self) -> TransportConfig:
        return self._config

    @property
    def terminators(self) -> Terminators:
        return self._terminators

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    def open(self) -> None:
        """Open the port with the configured line settings.

        Raises:
            ChannelOpenError: If the port cannot be opened.
        """
        if self.is_open:
            return

        cfg = self._config
        try:
            self._port = serial.serial_for_url(
                cfg.port,
                baudrate=cfg.baud_rate,
                bytesize=BYTESIZE_MAP[cfg.data_bits],
                parity=PARITY_MAP[cfg.parity],
                stopbits=STOPBITS_MAP[cfg.stop_bits],
                timeout=cfg.timeout,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self._port = None
            raise ChannelOpenError(
                f"Could not open {cfg.port} at {cfg.baud_rate} baud: {e}"
            ) from e

        logger.info(
            "Opened %s (%d %d%s%g)",
            cfg.port, cfg.baud_rate, cfg.data_bits, cfg.parity, cfg.stop_bits,
        )

    def close(self) -> None:
        """Close the port. Does nothing if it was never opened."""
        if self._port is None:
            return

        try:
            self._port.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing %s: %s", self._config.port, e)
        finally:
            self._port = None
            logger.info("Closed %s", self._config.port)

    def write_raw(self, data: bytes) -> int:
        """Write bytes to the port.

        Raises:
            NotOpenError: If the channel is not open.
            ChannelIOError: If the write fails.
        """
        port = self._require_open()
        try:
            written = port.write(data)
            port.flush()
        except (serial.SerialException, OSError) as e:
            raise ChannelIOError(f"Write to {self._config.port} failed: {e}") from e
        return len(data) if written is None else written

    def read_byte(self) -> int:
        """Read a single byte, blocking up to the configured timeout.

        Raises:
            NotOpenError: If the channel is not open.
            ChannelTimeoutError: If no byte arrived within the timeout.
            ChannelIOError: If the read fails.
        """
        port = self._require_open()
        try:
            data = port.read(1)
        except (serial.SerialException, OSError) as e:
            raise ChannelIOError(f"Read from {self._config.port} failed: {e}") from e
        if not data:
            raise ChannelTimeoutError(
                f"No data from {self._config.port} within {self._config.timeout}s"
            )
        return data[0]

    def _require_open(self) -> serial.SerialBase:
        if not self.is_open:
            raise NotOpenError(f"{self._config.port} is not open")
        return self._port

    def __enter__(self) -> SerialChannel:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"SerialChannel(port={self._config.port!r}, {state})"
