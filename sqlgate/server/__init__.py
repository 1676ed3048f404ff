"""MCP protocol handling and transports."""

from sqlgate.server.protocol import McpServer, PROTOCOL_VERSION
from sqlgate.server.stdio import StdioTransport, serve_stdio

__all__ = ["McpServer", "PROTOCOL_VERSION", "StdioTransport", "serve_stdio"]
