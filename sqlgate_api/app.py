from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from sqlgate import __version__
from sqlgate.config import Settings, get_settings
from sqlgate.database.manager import ConnectionManager
from sqlgate.server.protocol import McpServer
from sqlgate.tools.dispatcher import ToolDispatcher
from sqlgate.utils.logger import get_logger
from sqlgate_api.deps import clear_mcp_server, set_mcp_server
from sqlgate_api.routers import health_router, mcp_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings or get_settings()
    logger.info("SqlGate API starting up...")

    manager = ConnectionManager.from_settings(settings)
    if manager.is_configured:
        logger.info(f"  Connections: {', '.join(manager.connection_names)}")
    else:
        logger.warning("  Connections: none (waiting for initialize options)")

    server = McpServer(ToolDispatcher(manager, settings=settings))
    set_mcp_server(server)

    yield

    logger.info("SqlGate API shutting down...")
    await server.close()
    clear_mcp_server()


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to serve with; the cached settings when omitted
    """
    app = FastAPI(
        title="SqlGate API",
        description="Read-only SQL gateway exposed as MCP tools",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(mcp_router, prefix="/api/v1", tags=["MCP"])

    return app


app = create_app()
