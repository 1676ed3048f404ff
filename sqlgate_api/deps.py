from __future__ import annotations

from sqlgate.server.protocol import McpServer

_mcp_server: McpServer | None = None


def get_mcp_server_dep() -> McpServer:
    if _mcp_server is None:
        raise RuntimeError("McpServer not initialized. Ensure app lifespan initialized it.")
    return _mcp_server


def set_mcp_server(server: McpServer) -> None:
    global _mcp_server
    _mcp_server = server


def clear_mcp_server() -> None:
    global _mcp_server
    _mcp_server = None
