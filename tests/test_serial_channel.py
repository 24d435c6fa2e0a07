"""Tests for the serial channel, using pyserial's loop:// port."""

import pytest

from tabouli_mcp.errors import (
    ChannelIOError,
    ChannelOpenError,
    ChannelTimeoutError,
    NotOpenError,
)
from tabouli_mcp.transport.serial_channel import (
    SerialChannel,
    Terminators,
    TransportConfig,
)

TERMINATORS = Terminators(tx="\n", rx="\r\n")


def _loop_channel(timeout: float = 0.05) -> SerialChannel:
    return SerialChannel(TransportConfig("loop://", timeout=timeout), TERMINATORS)


def test_open_and_close():
    channel = _loop_channel()
    assert not channel.is_open
    channel.open()
    assert channel.is_open
    channel.close()
    assert not channel.is_open


def test_write_then_read_bytes():
    """The loopback port returns written bytes one at a time."""
    with _loop_channel() as channel:
        assert channel.write_raw(b"AB") == 2
        assert channel.read_byte() == 0x41
        assert channel.read_byte() == 0x42


def test_read_timeout_raises():
    with _loop_channel(timeout=0.01) as channel:
        with pytest.raises(ChannelTimeoutError):
            channel.read_byte()


def test_timeout_is_an_io_error():
    assert issubclass(ChannelTimeoutError, ChannelIOError)
    assert issubclass(ChannelIOError, IOError)


def test_open_bad_path_raises_connection_error():
    channel = SerialChannel(
        TransportConfig("/dev/does-not-exist-tabouli"), TERMINATORS
    )
    with pytest.raises(ChannelOpenError) as excinfo:
        channel.open()
    assert isinstance(excinfo.value, ConnectionError)
    assert not channel.is_open


def test_io_before_open_raises():
    channel = _loop_channel()
    with pytest.raises(NotOpenError):
        channel.write_raw(b"x")
    with pytest.raises(NotOpenError):
        channel.read_byte()


def test_io_after_close_raises():
    channel = _loop_channel()
    channel.open()
    channel.close()
    with pytest.raises(NotOpenError):
        channel.read_byte()


def test_close_never_opened():
    """Closing a channel that was never opened must not raise."""
    _loop_channel().close()


def test_close_twice():
    channel = _loop_channel()
    channel.open()
    channel.close()
    channel.close()


def test_open_twice_keeps_port():
    with _loop_channel() as channel:
        channel.write_raw(b"Z")
        channel.open()
        assert channel.read_byte() == ord("Z")


def test_terminators_must_be_non_empty():
    with pytest.raises(ValueError):
        Terminators(tx="", rx="\n")
    with pytest.raises(ValueError):
        Terminators(tx="\n", rx="")
    with pytest.raises(ValueError):
        Terminators(tx=None, rx="\n")


def test_transport_config_validation():
    with pytest.raises(ValueError):
        TransportConfig("loop://", parity="X")
    with pytest.raises(ValueError):
        TransportConfig("loop://", data_bits=9)
    with pytest.raises(ValueError):
        TransportConfig("loop://", stop_bits=3)


def test_transport_config_is_immutable():
    config = TransportConfig("loop://")
    with pytest.raises(AttributeError):
        config.baud_rate = 115200


def test_repr():
    channel = _loop_channel()
    assert "closed" in repr(channel)
    assert "loop://" in repr(channel)
