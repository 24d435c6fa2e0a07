"""Serial command console for embedded devices, served over MCP."""

__version__ = "0.1.0"
