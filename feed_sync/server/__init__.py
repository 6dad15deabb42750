"""MCP server package initialization"""

from feed_sync.server.app import cli, create_mcp_server, main

__all__ = ["cli", "create_mcp_server", "main"]
