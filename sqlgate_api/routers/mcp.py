"""
MCP over HTTP.

One JSON-RPC message per POST. Notifications are acknowledged with 202
and no body; everything else returns the response envelope with 200,
including envelope errors, as JSON-RPC requires.
"""

from __future__ import annotations

import json
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from sqlgate.server.protocol import McpServer
from sqlgate_api.deps import get_mcp_server_dep

router = APIRouter()


@router.post("/mcp")
async def handle_mcp(
    request: Request,
    server: Annotated[McpServer, Depends(get_mcp_server_dep)],
) -> Response:
    body = await request.body()
    response = await server.handle_message(body)
    if response is None:
        return Response(status_code=202)
    return JSONResponse(content=json.loads(json.dumps(response, default=str)))
