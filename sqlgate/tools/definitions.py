"""
Tool descriptors and tool response shapes.

Each tool declares a JSON-Schema input contract that is published by
``tools/list`` and used to presence- and type-check arguments before the
tool runs.
"""

import json
from typing import Any

from pydantic import Field

from sqlgate.exceptions import McpError
from sqlgate.models.base import BaseModel

_CONNECTION_ARG = {
    "type": "string",
    "description": "Named connection to use (required when several are configured)",
}
_DATABASE_ARG = {"type": "string", "description": "Database name"}
_SCHEMA_ARG = {
    "type": "string",
    "description": "Schema name (defaults to public on PostgreSQL, dbo on SQL Server)",
}


class ToolDescriptor(BaseModel):
    name: str
    description: str
    input_schema: dict[str, Any] = Field(..., alias="inputSchema")

    @property
    def required(self) -> list[str]:
        return list(self.input_schema.get("required", []))

    @property
    def properties(self) -> dict[str, dict[str, Any]]:
        return dict(self.input_schema.get("properties", {}))


class ToolResponse(BaseModel):
    """
    Outcome of one tool call.

    Expected failures (validation, connection, execution, timeout) are
    reported here with ``success=False`` rather than as protocol errors.
    """

    success: bool
    data: Any = None
    error: str | None = None
    errors: list[str] | None = None
    warnings: list[str] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        exc: McpError,
        *,
        errors: list[str] | None = None,
        warnings: list[str] | None = None,
    ) -> "ToolResponse":
        metadata: dict[str, Any] = {"errorCode": exc.error_code, "code": exc.code}
        if isinstance(exc.data, dict):
            metadata.update({k: v for k, v in exc.data.items() if k != "violations"})
        return cls(
            success=False,
            error=exc.message,
            errors=errors,
            warnings=warnings or None,
            metadata=metadata,
        )

    def to_tool_result(self) -> dict[str, Any]:
        """MCP ``tools/call`` result: the response as JSON text content."""
        return {
            "content": [
                {"type": "text", "text": json.dumps(self.to_dict(), indent=2, default=str)}
            ],
            "isError": not self.success,
        }


TOOLS: list[ToolDescriptor] = [
    ToolDescriptor(
        name="sql_list_databases",
        description="List all databases available on the configured server",
        input_schema={
            "type": "object",
            "properties": {"connection": _CONNECTION_ARG},
            "required": [],
        },
    ),
    ToolDescriptor(
        name="sql_list_tables",
        description="List tables and views in a database schema",
        input_schema={
            "type": "object",
            "properties": {
                "database": _DATABASE_ARG,
                "schema": _SCHEMA_ARG,
                "connection": _CONNECTION_ARG,
            },
            "required": ["database"],
        },
    ),
    ToolDescriptor(
        name="sql_describe_table",
        description=(
            "Describe a table: columns, indexes, foreign keys and constraints. "
            "The table may be given as schema.table"
        ),
        input_schema={
            "type": "object",
            "properties": {
                "database": _DATABASE_ARG,
                "table": {"type": "string", "description": "Table name"},
                "schema": _SCHEMA_ARG,
                "connection": _CONNECTION_ARG,
            },
            "required": ["database", "table"],
        },
    ),
    ToolDescriptor(
        name="sql_query",
        description=(
            "Execute a read-only SELECT query. Only SELECT, WITH and EXPLAIN statements "
            "are accepted and results are capped at maxRows rows"
        ),
        input_schema={
            "type": "object",
            "properties": {
                "database": _DATABASE_ARG,
                "query": {"type": "string", "description": "SQL SELECT statement"},
                "maxRows": {
                    "type": "integer",
                    "description": "Maximum rows to return (default 1000, max 10000)",
                    "minimum": 1,
                },
                "connection": _CONNECTION_ARG,
            },
            "required": ["database", "query"],
        },
    ),
    ToolDescriptor(
        name="sql_get_query_plan",
        description="Get the estimated execution plan for a query without executing it",
        input_schema={
            "type": "object",
            "properties": {
                "database": _DATABASE_ARG,
                "query": {"type": "string", "description": "SQL SELECT statement"},
                "connection": _CONNECTION_ARG,
            },
            "required": ["database", "query"],
        },
    ),
]

TOOLS_BY_NAME: dict[str, ToolDescriptor] = {tool.name: tool for tool in TOOLS}
