"""Command catalog discovery from the device's ``help`` reply.

Each advertised command arrives on its own line in the form::

    `comm_test`            Request communications test

i.e. the command text between two backticks, followed by a free-form
description. Lines that do not start with a backtick are banner text and
are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from ..errors import MalformedCatalogError
from .framing import FramedExchange

logger = logging.getLogger(__name__)

DISCOVERY_COMMAND = "help"
MARKER = "`"


@dataclass(frozen=True)
class Command:
    """A command advertised by the device."""

    text: str
    description: str = ""

    def to_dict(self) -> dict:
        return {"text": self.text, "description": self.description}


def parse_catalog_line(line: str) -> Command | None:
    """Parse one line of the help reply.

    Returns:
        A ``Command``, or ``None`` for lines that do not start with the marker.

    Raises:
        MalformedCatalogError: If a marker line does not hold exactly two
            markers (a marker inside the description counts as malformed).
    """
    if not line.startswith(MARKER):
        return None
    parts = line.split(MARKER)
    if len(parts) != 3:
        raise MalformedCatalogError(line)
    return Command(text=parts[1], description=parts[2].strip())


def parse_catalog(text: str) -> list[Command]:
    """Parse a complete help reply into commands, in the order received.

    Lines end at a newline only; a trailing carriage return is dropped.
    """
    commands: list[Command] = []
    for line in text.split("\n"):
        command = parse_catalog_line(line.rstrip("\r"))
        if command is not None:
            commands.append(command)
    return commands


class CommandCatalog:
    """The device's command set, as last discovered."""

    def __init__(self, commands: list[Command] | None = None) -> None:
        self._commands: tuple[Command, ...] = tuple(commands or ())

    @property
    def commands(self) -> tuple[Command, ...]:
        return self._commands

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands)

    def discover(self, exchange: FramedExchange) -> list[Command]:
        """Send ``help`` and replace the catalog with the parsed reply.

        The catalog is only replaced when the whole reply parses; on any
        failure the previous contents are kept.

        Raises:
            NotOpenError: If the channel is not open.
            ChannelIOError: If the transport failed while reading the reply.
            MalformedCatalogError: If a command line could not be parsed.
        """
        result = exchange.exchange_until_idle(DISCOVERY_COMMAND)
        if result.error is not None:
            raise result.error

        commands = parse_catalog(result.response)
        self._commands = tuple(commands)
        if commands:
            logger.info("Discovered %d commands", len(commands))
        else:
            logger.warning("No commands parsed from the %r reply", DISCOVERY_COMMAND)
        return commands

    def recognizes(self, text: str) -> bool:
        """Whether the first word of ``text`` starts with a known command.

        Only the first word is compared on both sides, so a catalog entry
        like ``led <on|off>`` matches ``led on``.
        """
        typed = text.split(" ")[0]
        if not typed:
            return False
        for command in self._commands:
            if typed.startswith(command.text.split(" ")[0]):
                return True
        return False
