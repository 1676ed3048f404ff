"""
SqlGate API Module.

FastAPI-based HTTP transport for the MCP gateway.
"""

from sqlgate_api.app import create_app

__all__ = ["create_app"]
