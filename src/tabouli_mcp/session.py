"""Device session: the command channel, the log channel and their state.

One :class:`Session` owns everything a front end needs: both channels, the
framed exchange (and with it the command-channel lock), the discovered
command catalog, the script runner and the log ingestor.
"""

from __future__ import annotations

import logging
from typing import Callable

from .config import BUILTIN_DEFAULTS, Defaults
from .errors import ChannelOpenError
from .ingest import ByteSink, LogIngestor
from .protocol.catalog import Command, CommandCatalog
from .protocol.framing import ExchangeResult, FramedExchange
from .scripts import Script, ScriptReport, ScriptRunner
from .transport.serial_channel import SerialChannel

logger = logging.getLogger(__name__)

ExchangeSink = Callable[[ExchangeResult], None]
ScriptErrorSink = Callable[[str, Exception], None]


class Session:
    """Owns the command and log channels for one device.

    Usage::

        session = Session.from_defaults("/dev/ttyUSB0", "/dev/ttyUSB1", defaults)
        session.open()
        session.discover()
        result = session.send("comm_test")
        session.close()
    """

    def __init__(
        self,
        cli_channel: SerialChannel,
        log_channel: SerialChannel | None = None,
        scripts: list[Script] | tuple[Script, ...] = (),
        on_exchange_complete: ExchangeSink | None = None,
        on_script_error: ScriptErrorSink | None = None,
        on_byte_received: ByteSink | None = None,
    ) -> None:
        self._cli = cli_channel
        self._logs = log_channel
        self._exchange = FramedExchange(cli_channel)
        self._catalog = CommandCatalog()
        self._runner = ScriptRunner(scripts)
        self._ingestor: LogIngestor | None = None
        self._on_exchange_complete = on_exchange_complete
        self._on_script_error = on_script_error
        self._on_byte_received = on_byte_received

    @classmethod
    def from_defaults(
        cls,
        cli_port: str,
        log_port: str | None = None,
        defaults: Defaults = BUILTIN_DEFAULTS,
        scripts: list[Script] | tuple[Script, ...] = (),
        **sinks,
    ) -> Session:
        cli = SerialChannel(
            defaults.cli.transport_config(cli_port), defaults.cli.terminators()
        )
        logs = None
        if log_port:
            logs = SerialChannel(
                defaults.logs.transport_config(log_port), defaults.logs.terminators()
            )
        return cls(cli, logs, scripts, **sinks)

    @property
    def cli_channel(self) -> SerialChannel:
        return self._cli

    @property
    def log_channel(self) -> SerialChannel | None:
        return self._logs

    @property
    def exchange(self) -> FramedExchange:
        return self._exchange

    @property
    def catalog(self) -> CommandCatalog:
        return self._catalog

    @property
    def runner(self) -> ScriptRunner:
        return self._runner

    @property
    def logging_active(self) -> bool:
        return self._ingestor is not None and self._ingestor.is_alive

    def open(self) -> None:
        """Open the command channel, then the log channel if there is one.

        Raises:
            ChannelOpenError: If the command channel cannot be opened. A log
                channel that fails to open only disables log ingestion.
        """
        self._cli.open()

        if self._logs is None:
            return
        if self.logging_active:
            return
        try:
            self._logs.open()
        except ChannelOpenError as e:
            logger.warning("Continuing without device logs: %s", e)
            return

        self._ingestor = LogIngestor(self._logs, sink=self._on_byte_received)
        self._ingestor.start()
        logger.info("Connected to logging port %s", self._logs.config.port)

    def close(self) -> None:
        if self._ingestor is not None:
            self._ingestor.stop()
            self._ingestor = None
        if self._logs is not None:
            self._logs.close()
        self._cli.close()

    def __enter__(self) -> Session:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def send(self, command: str) -> ExchangeResult:
        """Send one command and wait for its framed reply."""
        result = self._exchange.exchange(command)
        self._notify(result)
        return result

    def discover(self) -> list[Command]:
        """Refresh the command catalog from the device's ``help`` reply."""
        return self._catalog.discover(self._exchange)

    def recognizes(self, text: str) -> bool:
        return self._catalog.recognizes(text)

    def run_script(self, index: int) -> ScriptReport:
        """Replay one loaded script against the command channel."""
        return self._runner.run(
            index,
            self._exchange,
            on_result=self._notify,
            on_error=self._on_script_error,
        )

    def read_logs(self, max_bytes: int | None = None) -> str:
        """Return log text received since the last call."""
        if self._ingestor is None:
            return ""
        data = self._ingestor.drain(max_bytes)
        return data.decode(self._logs.encoding, errors="replace")

    def _notify(self, result: ExchangeResult) -> None:
        if self._on_exchange_complete is not None:
            self._on_exchange_complete(result)
