"""
Error taxonomy for SqlGate.

Every error raised on purpose by the gateway derives from ``McpError`` and
carries both a JSON-RPC integer code and a stable string code. Driver
exceptions never leave the adapter layer; they are re-wrapped into one of
the classes below.
"""

from __future__ import annotations

from typing import Any

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class McpError(Exception):
    """Base class for all gateway errors."""

    code: int = -32000
    error_code: str = "MCP_ERROR"

    def __init__(self, message: str, *, data: Any = None):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """JSON-RPC error object."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class DatabaseConnectionError(McpError):
    """The server cannot be reached or refused the credentials."""

    code = -32001
    error_code = "DATABASE_CONNECTION_ERROR"

    def __init__(self, message: str, *, db_type: str | None = None):
        super().__init__(message)
        self.db_type = db_type


class QueryValidationError(McpError):
    """SQL rejected by the validator; ``violations`` keeps the structured list."""

    code = -32002
    error_code = "QUERY_VALIDATION_ERROR"

    def __init__(self, violations: list[str], message: str | None = None):
        self.violations = list(violations)
        super().__init__(
            message or f"Query validation failed: {'; '.join(self.violations)}",
            data={"violations": self.violations},
        )


class InvalidIdentifierError(QueryValidationError):
    """An identifier contains characters outside ``[A-Za-z0-9_.]``."""

    error_code = "INVALID_IDENTIFIER"

    def __init__(self, identifier: str, reason: str = "contains disallowed characters"):
        self.identifier = identifier
        super().__init__([f"Invalid identifier {identifier!r}: {reason}"])


class QueryExecutionError(McpError):
    """Validated SQL failed inside the database engine."""

    code = -32003
    error_code = "QUERY_EXECUTION_ERROR"


class ConfigurationError(McpError):
    """Bad or missing connection parameters."""

    code = -32004
    error_code = "CONFIGURATION_ERROR"


class AmbiguousConnectionError(ConfigurationError):
    """No connection name given while several named connections exist."""

    error_code = "AMBIGUOUS_CONNECTION"

    def __init__(self, available: list[str]):
        self.available = sorted(available)
        super().__init__(
            "Multiple named connections are configured; specify one of: "
            + ", ".join(self.available)
        )
        self.data = {"available": self.available}


class QueryTimeoutError(McpError):
    """A command exceeded its deadline."""

    code = -32005
    error_code = "TIMEOUT_ERROR"

    def __init__(self, message: str, *, timeout_seconds: float):
        super().__init__(message, data={"timeoutSeconds": timeout_seconds})
        self.timeout_seconds = timeout_seconds


class NotInitializedError(McpError):
    """A tool needing a database was called before any target was configured."""

    code = -32006
    error_code = "NOT_INITIALIZED"

    def __init__(self, message: str = "Server is not initialized: no database connection is configured"):
        super().__init__(message)


class ToolNotFoundError(McpError):
    code = METHOD_NOT_FOUND
    error_code = "TOOL_NOT_FOUND"

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class PromptNotFoundError(McpError):
    code = METHOD_NOT_FOUND
    error_code = "PROMPT_NOT_FOUND"

    def __init__(self, prompt_name: str):
        super().__init__(f"Prompt not found: {prompt_name}")
        self.prompt_name = prompt_name


class MethodNotFoundError(McpError):
    code = METHOD_NOT_FOUND
    error_code = "METHOD_NOT_FOUND"

    def __init__(self, method: str):
        super().__init__(f"Method not found: {method}")


class ResourceNotFoundError(McpError):
    code = INVALID_PARAMS
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, uri: str):
        super().__init__(f"Resource not found: {uri}")
        self.uri = uri


class InvalidParamsError(McpError):
    code = INVALID_PARAMS
    error_code = "INVALID_PARAMS"


class InvalidRequestError(McpError):
    code = INVALID_REQUEST
    error_code = "INVALID_REQUEST"
