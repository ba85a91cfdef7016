"""MCP protocol binding."""

from .app import SERVER_NAME, create_server, run_server

__all__ = [
    "SERVER_NAME",
    "create_server",
    "run_server",
]
