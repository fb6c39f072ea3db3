"""Google Calendar tools exposed over MCP/SSE and a small REST surface."""

__version__ = "0.1.0"
