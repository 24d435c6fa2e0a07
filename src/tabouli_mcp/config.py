"""Defaults file handling.

``defaults.yaml`` holds line settings and terminators for the command
(``cli_*``) and log (``logs_*``) ports::

    cli_baud: 115200
    cli_data_bits: 8
    cli_stop_bits: 1
    cli_parity: "N"
    cli_tx_terminator: "\\n"
    cli_rx_terminator: "\\r\\n"
    logs_baud: 115200
    logs_tx_terminator: "\\n"
    logs_rx_terminator: "\\n"
    logs_timeout: 0.5

Terminators are never guessed for a port the caller requires: a missing
terminator is a :class:`~tabouli_mcp.errors.ConfigError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from .errors import ConfigError
from .transport.serial_channel import (
    DEFAULT_DATA_BITS,
    DEFAULT_PARITY,
    DEFAULT_STOP_BITS,
    DEFAULT_TIMEOUT_S,
    Terminators,
    TransportConfig,
)

logger = logging.getLogger(__name__)

DEFAULTS_FILENAME = "defaults.yaml"

CLI_BAUD_RATE = 9600
LOGS_BAUD_RATE = 115200

CLI_TERMINATORS = Terminators(tx="\n", rx="\r\n")
LOGS_TERMINATORS = Terminators(tx="\n", rx="\n")


@dataclass(frozen=True)
class PortDefaults:
    """Line settings and terminators for one port."""

    baud_rate: int
    data_bits: int = DEFAULT_DATA_BITS
    stop_bits: float = DEFAULT_STOP_BITS
    parity: str = DEFAULT_PARITY
    tx_terminator: str = ""
    rx_terminator: str = ""
    timeout: float = DEFAULT_TIMEOUT_S

    def transport_config(self, port: str) -> TransportConfig:
        return TransportConfig(
            port=port,
            baud_rate=self.baud_rate,
            data_bits=self.data_bits,
            stop_bits=self.stop_bits,
            parity=self.parity,
            timeout=self.timeout,
        )

    def terminators(self) -> Terminators:
        return Terminators(tx=self.tx_terminator, rx=self.rx_terminator)


@dataclass(frozen=True)
class Defaults:
    cli: PortDefaults
    logs: PortDefaults


BUILTIN_DEFAULTS = Defaults(
    cli=PortDefaults(
        baud_rate=CLI_BAUD_RATE,
        tx_terminator=CLI_TERMINATORS.tx,
        rx_terminator=CLI_TERMINATORS.rx,
    ),
    logs=PortDefaults(
        baud_rate=LOGS_BAUD_RATE,
        tx_terminator=LOGS_TERMINATORS.tx,
        rx_terminator=LOGS_TERMINATORS.rx,
    ),
)


def find_defaults(root: str | Path = ".") -> Path | None:
    """Return the first ``defaults.yaml`` found under ``root``, if any."""
    matches = sorted(Path(root).rglob(DEFAULTS_FILENAME))
    return matches[0] if matches else None


def _port_defaults(
    data: dict,
    prefix: str,
    fallback: PortDefaults,
    required: bool,
) -> PortDefaults:
    tx = data.get(f"{prefix}_tx_terminator") or ""
    rx = data.get(f"{prefix}_rx_terminator") or ""
    if not tx or not rx:
        if required:
            raise ConfigError(f"{prefix} terminators not found in defaults file")
        tx, rx = fallback.tx_terminator, fallback.rx_terminator

    try:
        port = PortDefaults(
            baud_rate=int(data.get(f"{prefix}_baud") or fallback.baud_rate),
            data_bits=int(data.get(f"{prefix}_data_bits") or fallback.data_bits),
            stop_bits=float(data.get(f"{prefix}_stop_bits") or fallback.stop_bits),
            parity=str(data.get(f"{prefix}_parity") or fallback.parity),
            tx_terminator=str(tx),
            rx_terminator=str(rx),
            timeout=float(data.get(f"{prefix}_timeout") or fallback.timeout),
        )
        # Validate line settings up front so errors surface before open().
        port.transport_config("")
        port.terminators()
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid {prefix} settings in defaults file: {e}") from e
    return port


def parse_defaults(
    text: str,
    *,
    require_cli: bool = True,
    require_logs: bool = False,
) -> Defaults:
    """Parse the YAML body of a defaults file.

    Raises:
        ConfigError: If the YAML is invalid or a required port has no
            terminators.
    """
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"error parsing defaults file: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("defaults file must be a mapping")

    return Defaults(
        cli=_port_defaults(data, "cli", BUILTIN_DEFAULTS.cli, require_cli),
        logs=_port_defaults(data, "logs", BUILTIN_DEFAULTS.logs, require_logs),
    )


def load_defaults(
    path: str | Path,
    *,
    require_cli: bool = True,
    require_logs: bool = False,
) -> Defaults:
    """Load and validate a defaults file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"default file not readable: {path}: {e}") from e

    defaults = parse_defaults(text, require_cli=require_cli, require_logs=require_logs)
    logger.info("Loaded defaults from %s", path)
    return defaults
