"""Tests for the device session, over pyserial loop:// ports."""

import threading
import time

import pytest

from tabouli_mcp.config import Defaults, PortDefaults
from tabouli_mcp.errors import ChannelOpenError, NotOpenError
from tabouli_mcp.protocol.catalog import Command
from tabouli_mcp.scripts import Script
from tabouli_mcp.session import Session

# loop:// echoes writes, so equal tx/rx terminators make every echo a valid reply.
LOOP_DEFAULTS = Defaults(
    cli=PortDefaults(baud_rate=9600, tx_terminator="\r\n", rx_terminator="\r\n", timeout=0.05),
    logs=PortDefaults(baud_rate=115200, tx_terminator="\n", rx_terminator="\n", timeout=0.02),
)


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_send_notifies_exchange_sink():
    completed = []
    session = Session.from_defaults(
        "loop://", defaults=LOOP_DEFAULTS, on_exchange_complete=completed.append
    )
    with session:
        result = session.send("comm_test")

    assert result.ok
    assert result.response == "comm_test\r\n"
    assert completed == [result]


def test_send_before_open():
    session = Session.from_defaults("loop://", defaults=LOOP_DEFAULTS)
    with pytest.raises(NotOpenError):
        session.send("help")


def test_open_bad_cli_port():
    session = Session.from_defaults("/dev/does-not-exist-tabouli", defaults=LOOP_DEFAULTS)
    with pytest.raises(ChannelOpenError):
        session.open()


def test_discover_and_recognize():
    with Session.from_defaults("loop://", defaults=LOOP_DEFAULTS) as session:
        # Queue the device's listing ahead of the echoed "help" request.
        session.cli_channel.write_raw(b"`comm_test`Request communications test\r\n")
        commands = session.discover()

        assert commands == [Command("comm_test", "Request communications test")]
        assert session.recognizes("comm_test now")
        assert not session.recognizes("reboot")


def test_log_port_failure_is_degraded_mode():
    session = Session.from_defaults(
        "loop://", "/dev/does-not-exist-tabouli", defaults=LOOP_DEFAULTS
    )
    with session:
        assert session.cli_channel.is_open
        assert not session.logging_active
        assert session.read_logs() == ""
        assert session.send("ping").ok


def test_logs_are_ingested_alongside_commands():
    with Session.from_defaults("loop://", "loop://", defaults=LOOP_DEFAULTS) as session:
        assert session.logging_active
        session.log_channel.write_raw(b"boot ok\n")
        assert session.send("ping").response == "ping\r\n"

        collected = []

        def got_all_logs() -> bool:
            collected.append(session.read_logs())
            return "".join(collected) == "boot ok\n"

        assert _wait_for(got_all_logs)

    assert not session.logging_active
    assert not session.log_channel.is_open


def test_byte_sink_receives_log_bytes():
    received = []
    session = Session.from_defaults(
        "loop://", "loop://", defaults=LOOP_DEFAULTS, on_byte_received=received.append
    )
    with session:
        session.log_channel.write_raw(b"AB")
        assert _wait_for(lambda: received == [0x41, 0x42])


def test_run_script_reports_every_step():
    completed = []
    session = Session.from_defaults(
        "loop://",
        defaults=LOOP_DEFAULTS,
        scripts=[Script("test_smoke.yaml", ("version", "comm_test"))],
        on_exchange_complete=completed.append,
    )
    with session:
        report = session.run_script(0)

    assert report.errors == 0
    assert [r.response for r in report.results] == ["version\r\n", "comm_test\r\n"]
    assert [r.command for r in completed] == ["version", "comm_test"]


def test_run_script_on_closed_session_reports_errors():
    errors = []
    session = Session.from_defaults(
        "loop://",
        defaults=LOOP_DEFAULTS,
        scripts=[Script("t", ("a", "b"))],
        on_script_error=lambda cmd, err: errors.append(cmd),
    )
    report = session.run_script(0)

    assert errors == ["a", "b"]
    assert report.errors == 2
    assert not session.runner.running


def test_close_is_idempotent():
    session = Session.from_defaults("loop://", "loop://", defaults=LOOP_DEFAULTS)
    session.open()
    session.close()
    session.close()
    assert not session.cli_channel.is_open


def test_open_twice_leaves_no_ingestor_behind():
    """Reopening an open session keeps a single log reader, stopped by close()."""

    def ingestor_threads() -> list[threading.Thread]:
        return [t for t in threading.enumerate() if t.name == "log-ingestor"]

    before = len(ingestor_threads())
    session = Session.from_defaults("loop://", "loop://", defaults=LOOP_DEFAULTS)
    session.open()
    session.open()
    assert len(ingestor_threads()) == before + 1

    session.close()
    assert _wait_for(lambda: len(ingestor_threads()) == before)
