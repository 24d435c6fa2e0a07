"""MCP server entry point for serial device control.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import BUILTIN_DEFAULTS, find_defaults, load_defaults
from .errors import ChannelIOError, MalformedCatalogError, TabouliError
from .scripts import load_scripts
from .session import Session

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "tabouli",
    instructions="Send commands to an embedded device over a serial line, "
    "read its logs and replay test scripts",
)

# Global session state
_session: Session | None = None


def _get_session() -> Session:
    """Get the active session, raising if not connected."""
    if _session is None or not _session.cli_channel.is_open:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _session


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(
    cli_port: str,
    log_port: str | None = None,
    defaults_path: str | None = None,
    scripts_dir: str = ".",
) -> dict[str, Any]:
    """Open the command port (and optionally the log port) of the device.

    Line settings and terminators come from ``defaults.yaml`` (found under
    the working directory unless ``defaults_path`` is given). Test scripts
    (``test_*.yaml``) are loaded from ``scripts_dir``. The command catalog
    is fetched with ``help`` right after connecting.

    Args:
        cli_port: Serial device or pyserial URL for commands, e.g. /dev/ttyUSB0.
        log_port: Optional serial device streaming device logs.
        defaults_path: Optional path to a defaults.yaml file.
        scripts_dir: Directory searched for test_*.yaml scripts.
    """
    global _session
    if _session is not None and _session.cli_channel.is_open:
        return {
            "connected": True,
            "message": "Already connected",
            "cli_port": _session.cli_channel.config.port,
        }
    if _session is not None:
        # Command port dropped; release the log port and its reader too.
        _session.close()
        _session = None

    path = Path(defaults_path) if defaults_path else find_defaults(".")
    defaults = BUILTIN_DEFAULTS
    if path is not None:
        defaults = load_defaults(path, require_cli=True, require_logs=bool(log_port))

    scripts = load_scripts(scripts_dir)
    session = Session.from_defaults(cli_port, log_port, defaults, scripts)
    session.open()
    _session = session

    result: dict[str, Any] = {
        "connected": True,
        "cli_port": cli_port,
        "logs": session.logging_active,
        "scripts": len(scripts),
    }

    try:
        commands = session.discover()
        result["commands"] = len(commands)
    except (ChannelIOError, MalformedCatalogError) as e:
        result["commands"] = 0
        result["catalog_error"] = str(e)

    return result


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close both serial ports."""
    global _session
    if _session is None:
        return {"disconnected": True}
    _session.close()
    _session = None
    return {"disconnected": True}


# ─── COMMAND TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def send_command(command: str) -> dict[str, Any]:
    """Send a command to the device and return its reply.

    The reply is everything up to and including the receive terminator.

    Args:
        command: Command text, without terminator.
    """
    session = _get_session()
    result = session.send(command)
    if result.error is not None:
        return {
            "command": command,
            "response": result.response,
            "error": f"error reading from device {result.error}",
        }
    return {"command": command, "response": result.response}


@mcp.tool()
def list_commands(refresh: bool = False) -> dict[str, Any]:
    """List the commands the device advertised in its ``help`` reply.

    Args:
        refresh: Re-send ``help`` and rebuild the list first.
    """
    session = _get_session()
    if refresh or len(session.catalog) == 0:
        try:
            session.discover()
        except (ChannelIOError, MalformedCatalogError) as e:
            return {"error": str(e)}

    return {"commands": [c.to_dict() for c in session.catalog]}


@mcp.tool()
def check_command(text: str) -> dict[str, Any]:
    """Check whether the first word of ``text`` matches a known command.

    Args:
        text: Command line as it would be typed.
    """
    session = _get_session()
    return {"text": text, "recognized": session.recognizes(text)}


# ─── TEST SCRIPT TOOLS ────────────────────────────────────────────────

@mcp.tool()
def list_scripts() -> dict[str, Any]:
    """List the loaded test scripts with their commands."""
    session = _get_session()
    return {
        "scripts": [
            {"index": i, **s.to_dict()} for i, s in enumerate(session.runner.scripts)
        ]
    }


@mcp.tool()
def run_script(index: int) -> dict[str, Any]:
    """Replay a test script against the device.

    Every command is sent even when earlier ones fail; each step's reply
    or error is returned.

    Args:
        index: Script index as reported by list_scripts.
    """
    session = _get_session()
    try:
        report = session.run_script(index)
    except TabouliError as e:
        return {"error": str(e)}
    return report.to_dict()


# ─── LOG TOOLS ────────────────────────────────────────────────────────

@mcp.tool()
def read_logs(max_bytes: int = 4096) -> dict[str, Any]:
    """Return device log output received since the last call.

    Args:
        max_bytes: Maximum number of bytes to return.
    """
    session = _get_session()
    if not session.logging_active:
        return {"error": "No log port connected"}
    return {"logs": session.read_logs(max_bytes)}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("tabouli://device/status")
def resource_device_status() -> str:
    """Connection state of the command and log ports."""
    if _session is None or not _session.cli_channel.is_open:
        return json.dumps({"connected": False})

    logs = _session.log_channel
    return json.dumps({
        "connected": True,
        "cli_port": _session.cli_channel.config.port,
        "baud_rate": _session.cli_channel.config.baud_rate,
        "log_port": logs.config.port if logs is not None else None,
        "logs": _session.logging_active,
        "script_running": _session.runner.running,
    })


@mcp.resource("tabouli://catalog/commands")
def resource_command_catalog() -> str:
    """Commands discovered from the device."""
    if _session is None:
        return json.dumps({"commands": [], "count": 0})
    commands = [c.to_dict() for c in _session.catalog]
    return json.dumps({"commands": commands, "count": len(commands)})


@mcp.resource("tabouli://scripts/list")
def resource_scripts_list() -> str:
    """Names of the loaded test scripts."""
    if _session is None:
        return json.dumps({"scripts": []})
    return json.dumps({"scripts": _session.runner.names()})


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def diagnose_device(symptom: str) -> str:
    """Guide the AI through diagnosing a misbehaving device.

    Args:
        symptom: What the device is doing wrong.
    """
    return f"""The device shows this problem: {symptom}

Steps:
- Use list_commands to see what the device supports
- Send status or diagnostic commands with send_command
- Check read_logs for errors around the time of each command
- Repeat suspicious commands; intermittent failures matter

Report which commands failed, what the logs showed, and a likely cause."""


@mcp.prompt()
def draft_test_script(goal: str) -> str:
    """Help write a test_*.yaml regression script.

    Args:
        goal: What the script should exercise.
    """
    return f"""Write a test script that exercises: {goal}

Use list_commands to pick commands the device actually supports.
Try each one with send_command before adding it.
Output YAML in this form, saved as test_<name>.yaml:

commands:
  - first command
  - second command

Order matters: commands are replayed exactly as listed."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
