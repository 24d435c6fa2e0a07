"""Transport layer: serial port ownership and raw byte I/O."""

from .serial_channel import SerialChannel, Terminators, TransportConfig
