"""Protocol layer: terminator framing and command catalog discovery."""

from .framing import ExchangeResult, FramedExchange, strip_terminator
from .catalog import Command, CommandCatalog, parse_catalog
