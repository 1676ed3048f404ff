"""
API Routers.
"""

from sqlgate_api.routers.health import router as health_router
from sqlgate_api.routers.mcp import router as mcp_router

__all__ = [
    "health_router",
    "mcp_router",
]
