"""
JSON-RPC protocol handler.

Maps MCP methods onto the tool dispatcher and the prompt templates and
wraps every outcome in a JSON-RPC 2.0 envelope. Expected tool failures are
results (``isError: true``); only protocol problems and unexpected
exceptions become envelope errors.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

from sqlgate import __version__
from sqlgate.config import DEFAULT_CONNECTION_NAME
from sqlgate.database.manager import ConnectionManager
from sqlgate.descriptor import parse_connection_string
from sqlgate.exceptions import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    InvalidParamsError,
    McpError,
    MethodNotFoundError,
)
from sqlgate.prompts import get_prompt, list_prompts
from sqlgate.resources import list_resources, read_resource
from sqlgate.tools.dispatcher import ToolDispatcher
from sqlgate.utils.logger import get_logger

logger = get_logger(__name__)

PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")
SERVER_NAME = "sqlgate"

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


def is_valid_id(value: Any) -> bool:
    """JSON-RPC ids are strings, integers or null; bool is not an id."""
    return value is None or (isinstance(value, (str, int)) and not isinstance(value, bool))


def success_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(
    request_id: Any, code: int, message: str, data: Any = None
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


class McpServer:
    """
    Transport-independent MCP request handler.

    Usage:
        server = McpServer(ToolDispatcher(manager))
        response = await server.handle_message(line)
    """

    def __init__(self, dispatcher: ToolDispatcher):
        self.dispatcher = dispatcher
        self._methods: dict[str, Handler] = {
            "initialize": self._initialize,
            "notifications/initialized": self._noop,
            "notifications/cancelled": self._noop,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "resources/list": self._list_resources,
            "resources/read": self._read_resource,
            "prompts/list": self._list_prompts,
            "prompts/get": self._get_prompt,
        }

    async def handle_message(self, raw: str | bytes) -> dict[str, Any] | None:
        """Parse one raw message and handle it. Returns None for notifications."""
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Rejected unparseable message: {e}")
            return error_response(None, PARSE_ERROR, f"Parse error: {e}")
        return await self.handle_request(payload)

    async def handle_request(self, payload: Any) -> dict[str, Any] | None:
        """
        Handle one decoded JSON-RPC message.

        Returns:
            Response envelope, or None when the message is a notification
        """
        if not isinstance(payload, dict):
            return error_response(None, INVALID_REQUEST, "Invalid Request: expected a JSON object")

        request_id = payload.get("id")
        is_notification = "id" not in payload
        if not is_valid_id(request_id):
            return error_response(
                None, INVALID_REQUEST, "Invalid Request: id must be a string, integer or null"
            )
        method = payload.get("method")
        if not isinstance(method, str) or not method:
            return error_response(request_id, INVALID_REQUEST, "Invalid Request: missing method")

        params = payload.get("params")
        try:
            if params is None:
                params = {}
            elif not isinstance(params, dict):
                raise InvalidParamsError("params must be an object")

            handler = self._methods.get(method)
            if handler is None:
                raise MethodNotFoundError(method)
            logger.debug(f"Handling {method} (id={request_id})")
            result = await handler(params)
        except asyncio.CancelledError:
            raise
        except McpError as e:
            if is_notification:
                logger.debug(f"Ignored notification {method}: {e.message}")
                return None
            return {"jsonrpc": "2.0", "id": request_id, "error": e.to_dict()}
        except Exception as e:
            logger.exception(f"Unexpected error handling {method}")
            if is_notification:
                return None
            return error_response(request_id, INTERNAL_ERROR, "Internal error", data=str(e))

        if is_notification:
            return None
        return success_response(request_id, result)

    async def close(self) -> None:
        """Release every engine the dispatcher holds."""
        if self.dispatcher.connections is not None:
            await self.dispatcher.connections.close_all()

    # ----- methods -----------------------------------------------------------

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        options = params.get("initializationOptions") or {}
        if options and not self.dispatcher.is_initialized:
            self.dispatcher.configure(self._connections_from_options(options))

        requested = params.get("protocolVersion")
        client = (params.get("clientInfo") or {}).get("name", "unknown")
        logger.info(f"Initialize from client {client} (protocol {requested})")
        return {
            "protocolVersion": (
                requested if requested in SUPPORTED_PROTOCOL_VERSIONS else PROTOCOL_VERSION
            ),
            "capabilities": {
                "tools": {"listChanged": False},
                "prompts": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    @staticmethod
    def _connections_from_options(options: Any) -> ConnectionManager:
        if not isinstance(options, dict):
            raise InvalidParamsError("initializationOptions must be an object")

        raw: dict[str, str] = {}
        connections = options.get("connections") or {}
        if not isinstance(connections, dict):
            raise InvalidParamsError("initializationOptions.connections must be an object")
        raw.update({str(name): value for name, value in connections.items()})
        if options.get("connectionString"):
            raw[DEFAULT_CONNECTION_NAME] = options["connectionString"]

        descriptors = {}
        for name, value in raw.items():
            if not isinstance(value, str):
                raise InvalidParamsError(f"Connection '{name}' must be a connection string")
            descriptors[name] = parse_connection_string(value)
        return ConnectionManager(descriptors)

    async def _noop(self, params: dict[str, Any]) -> None:
        return None

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [tool.to_dict() for tool in self.dispatcher.list_tools()]}

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("tools/call requires a tool name")
        response = await self.dispatcher.call_tool(name, params.get("arguments"))
        return response.to_tool_result()

    async def _list_prompts(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"prompts": list_prompts()}

    async def _get_prompt(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("prompts/get requires a prompt name")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidParamsError("prompts/get arguments must be an object")
        return get_prompt(name, arguments)

    async def _list_resources(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"resources": list_resources(self.dispatcher.connections)}

    async def _read_resource(self, params: dict[str, Any]) -> dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise InvalidParamsError("resources/read requires a resource uri")
        return await read_resource(self.dispatcher.connections, uri)
