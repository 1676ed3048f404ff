from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from sqlgate import __version__
from sqlgate.server.protocol import McpServer
from sqlgate_api.deps import get_mcp_server_dep

router = APIRouter()

_start_time = datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime


class ReadyResponse(BaseModel):
    status: str
    version: str
    initialized: bool
    connections: list[str]
    uptime_seconds: float


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check(
    server: Annotated[McpServer, Depends(get_mcp_server_dep)],
) -> ReadyResponse:
    uptime = (datetime.now(timezone.utc) - _start_time).total_seconds()
    dispatcher = server.dispatcher
    names = dispatcher.connections.connection_names if dispatcher.connections else []

    return ReadyResponse(
        status="ready" if dispatcher.is_initialized else "uninitialized",
        version=__version__,
        initialized=dispatcher.is_initialized,
        connections=names,
        uptime_seconds=uptime,
    )
