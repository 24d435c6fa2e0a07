"""Test script loading and playback.

A script file is YAML with a single ``commands`` list::

    commands:
      - comm_test
      - led on
      - version

Files named ``test_*.yaml`` are picked up from the working tree. Playback
sends every command in order; a failed step is reported and the run moves
on to the next one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import yaml

from .errors import (
    ScriptBusyError,
    ScriptFormatError,
    ScriptIndexError,
    TabouliError,
)
from .protocol.framing import ExchangeResult, FramedExchange

logger = logging.getLogger(__name__)

SCRIPT_PATTERN = "test_*.yaml"


@dataclass(frozen=True)
class Script:
    """A named, ordered list of commands."""

    name: str
    commands: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"name": self.name, "commands": list(self.commands)}


@dataclass
class ScriptReport:
    """Per-step results of one script run."""

    name: str
    results: list[ExchangeResult] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "steps": [
                {
                    "command": r.command,
                    "response": r.response,
                    "error": str(r.error) if r.error else None,
                }
                for r in self.results
            ],
            "errors": self.errors,
        }


def parse_script(name: str, text: str) -> Script:
    """Parse the YAML body of a script file.

    Raises:
        ScriptFormatError: If the YAML is invalid or ``commands`` is not a
            list of strings.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ScriptFormatError(f"{name}: invalid YAML: {e}") from e

    if data is None:
        return Script(name=name)
    if not isinstance(data, dict):
        raise ScriptFormatError(f"{name}: expected a mapping with a 'commands' key")

    commands = data.get("commands") or []
    if not isinstance(commands, list) or not all(isinstance(c, str) for c in commands):
        raise ScriptFormatError(f"{name}: 'commands' must be a list of strings")
    return Script(name=name, commands=tuple(commands))


def load_scripts(root: str | Path = ".", pattern: str = SCRIPT_PATTERN) -> list[Script]:
    """Find and parse every script file under ``root``.

    Returns:
        Scripts sorted by their path relative to ``root``; empty if none.
    """
    root = Path(root)
    scripts: list[Script] = []
    for path in sorted(p for p in root.rglob(pattern) if p.is_file()):
        name = path.relative_to(root).as_posix()
        scripts.append(parse_script(name, path.read_text(encoding="utf-8")))

    logger.info("Loaded %d test scripts from %s", len(scripts), root)
    return scripts


class ScriptRunner:
    """Replays scripts through a :class:`FramedExchange`, one run at a time."""

    def __init__(self, scripts: list[Script] | tuple[Script, ...] = ()) -> None:
        self._scripts = tuple(scripts)
        self._guard = threading.Lock()

    @property
    def scripts(self) -> tuple[Script, ...]:
        return self._scripts

    @property
    def running(self) -> bool:
        return self._guard.locked()

    def names(self) -> list[str]:
        return [s.name for s in self._scripts]

    def run(
        self,
        index: int,
        exchange: FramedExchange,
        on_result: Callable[[ExchangeResult], None] | None = None,
        on_error: Callable[[str, Exception], None] | None = None,
    ) -> ScriptReport:
        """Play script ``index`` from start to finish.

        Every command is sent even if earlier ones failed. ``on_error`` is
        called once per failed step, ``on_result`` once per step. An
        exception raised by either callback is logged and playback goes on.

        Raises:
            ScriptBusyError: If another run is in progress.
            ScriptIndexError: If ``index`` does not name a loaded script.
        """
        if not self._guard.acquire(blocking=False):
            raise ScriptBusyError("Test in progress, please wait")

        try:
            if not 0 <= index < len(self._scripts):
                raise ScriptIndexError(
                    f"Script index {index} out of range (0-{len(self._scripts) - 1})"
                )

            script = self._scripts[index]
            report = ScriptReport(name=script.name)
            logger.info(
                "Starting test %s with %d commands", script.name, len(script.commands)
            )
            for command in script.commands:
                result = self._step(exchange, command)
                report.results.append(result)
                if on_result is not None:
                    _notify(on_result, result)
                if result.error is not None and on_error is not None:
                    _notify(on_error, command, result.error)

            logger.info("Test %s complete, %d errors", script.name, report.errors)
            return report
        finally:
            self._guard.release()

    @staticmethod
    def _step(exchange: FramedExchange, command: str) -> ExchangeResult:
        try:
            return exchange.exchange(command)
        except TabouliError as e:
            # A closed channel is recorded like any other failed step.
            return ExchangeResult(command, "", e)


def _notify(callback: Callable[..., None], *args) -> None:
    try:
        callback(*args)
    except Exception as e:
        logger.warning("Script callback raised %s: %s", type(e).__name__, e)
