"""
Tool dispatcher.

Receives a named tool invocation, checks its arguments, resolves the
target connection, runs the validator for query-bearing tools and calls
the adapter. Expected failures come back as ``ToolResponse(success=False)``;
only unknown tools and malformed arguments raise.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlgate.config import Settings, get_settings
from sqlgate.database.manager import ConnectionManager
from sqlgate.exceptions import (
    InvalidParamsError,
    McpError,
    NotInitializedError,
    QueryValidationError,
    ToolNotFoundError,
)
from sqlgate.security.validator import QueryValidator
from sqlgate.tools.definitions import TOOLS, TOOLS_BY_NAME, ToolDescriptor, ToolResponse
from sqlgate.utils.logger import get_logger, preview

logger = get_logger(__name__)

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def check_arguments(tool: ToolDescriptor, arguments: Any) -> dict[str, Any]:
    """
    Presence- and type-check arguments against a tool's input schema.

    Raises:
        InvalidParamsError: naming the first missing or mistyped argument
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise InvalidParamsError(f"Arguments for {tool.name} must be an object")

    for name in tool.required:
        value = arguments.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise InvalidParamsError(f"Missing required argument for {tool.name}: {name}")

    for name, spec in tool.properties.items():
        value = arguments.get(name)
        if value is None:
            continue
        expected = _JSON_TYPES.get(spec.get("type", ""))
        # bool is an int subclass
        if expected and (not isinstance(value, expected) or (
            isinstance(value, bool) and bool not in expected
        )):
            raise InvalidParamsError(
                f"Argument {name} for {tool.name} must be of type {spec['type']}"
            )
        minimum = spec.get("minimum")
        if minimum is not None and value < minimum:
            raise InvalidParamsError(f"Argument {name} for {tool.name} must be >= {minimum}")

    return arguments


class ToolDispatcher:
    """
    Dispatches ``tools/call`` requests to the five gateway tools.

    The dispatcher starts uninitialized when no connection is configured;
    ``configure`` moves it to ready. Every tool fails fast with
    NOT_INITIALIZED until then.
    """

    def __init__(
        self,
        connections: ConnectionManager | None = None,
        validator: QueryValidator | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.connections = connections
        self.validator = validator or QueryValidator(
            max_query_length=self.settings.max_query_length,
            max_rows=self.settings.default_max_rows,
        )
        self._handlers = {
            "sql_list_databases": self._list_databases,
            "sql_list_tables": self._list_tables,
            "sql_describe_table": self._describe_table,
            "sql_query": self._query,
            "sql_get_query_plan": self._query_plan,
        }

    @property
    def is_initialized(self) -> bool:
        return self.connections is not None and self.connections.is_configured

    def configure(self, connections: ConnectionManager) -> None:
        self.connections = connections
        logger.info(f"Dispatcher configured with connections: {connections.connection_names}")

    def list_tools(self) -> list[ToolDescriptor]:
        return list(TOOLS)

    async def call_tool(self, name: str, arguments: Any = None) -> ToolResponse:
        """
        Run one tool.

        Raises:
            ToolNotFoundError: for an unknown tool name
            InvalidParamsError: for missing or mistyped arguments
        """
        tool = TOOLS_BY_NAME.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        args = check_arguments(tool, arguments)

        logger.info(f"Executing {name} tool")
        try:
            if not self.is_initialized:
                raise NotInitializedError()
            return await self._handlers[name](args)
        except QueryValidationError as e:
            logger.warning(f"{name} rejected: {e.message}")
            return ToolResponse.failure(e, errors=e.violations)
        except McpError as e:
            logger.error(f"{name} failed ({e.error_code}): {e.message}")
            return ToolResponse.failure(e)

    async def _list_databases(self, args: dict[str, Any]) -> ToolResponse:
        adapter = self.connections.get_adapter(args.get("connection"))
        databases = await adapter.list_databases()
        return ToolResponse(
            success=True,
            data=[db.to_dict() for db in databases],
            metadata={
                "connection": adapter.connection_name,
                "count": len(databases),
                "timestamp": _now(),
            },
        )

    async def _list_tables(self, args: dict[str, Any]) -> ToolResponse:
        adapter = self.connections.get_adapter(args.get("connection"))
        database = self.validator.sanitize_identifier(args["database"])
        schema = args.get("schema")
        schema = self.validator.sanitize_identifier(schema) if schema else adapter.default_schema

        tables = await adapter.list_tables(database, schema)
        return ToolResponse(
            success=True,
            data=[table.to_dict() for table in tables],
            metadata={
                "connection": adapter.connection_name,
                "database": database,
                "schema": schema,
                "count": len(tables),
                "timestamp": _now(),
            },
        )

    async def _describe_table(self, args: dict[str, Any]) -> ToolResponse:
        adapter = self.connections.get_adapter(args.get("connection"))
        database = self.validator.sanitize_identifier(args["database"])
        table = self.validator.sanitize_identifier(args["table"])
        schema = args.get("schema")
        if schema:
            schema = self.validator.sanitize_identifier(schema)
        if "." in table:
            qualifier, table = table.split(".", 1)
            if schema and qualifier.lower() != schema.lower():
                raise InvalidParamsError(
                    f"Table {args['table']} conflicts with schema argument {schema}"
                )
            schema = qualifier
            if not schema or not table or "." in table:
                raise InvalidParamsError(f"Invalid table name: {args['table']}")

        described = await adapter.describe_table(database, schema, table)
        return ToolResponse(
            success=True,
            data=described.to_dict(),
            metadata={
                "connection": adapter.connection_name,
                "database": database,
                "schema": described.schema_name,
                "table": described.table,
                "columnCount": len(described.columns),
                "indexCount": len(described.indexes),
                "foreignKeyCount": len(described.foreign_keys),
                "timestamp": _now(),
            },
        )

    async def _query(self, args: dict[str, Any]) -> ToolResponse:
        adapter = self.connections.get_adapter(args.get("connection"))
        database = self.validator.sanitize_identifier(args["database"])
        sql = args["query"]
        max_rows = min(
            args.get("maxRows") or self.settings.default_max_rows, self.settings.max_rows_cap
        )

        validation = self.validator.validate(sql, max_rows=max_rows)
        if not validation.is_valid:
            logger.warning(f"sql_query rejected: {validation.errors} | query: {preview(sql)}")
            return ToolResponse.failure(
                QueryValidationError(validation.errors),
                errors=validation.errors,
                warnings=validation.warnings,
            )

        limited = self.validator.enforce_row_limit(sql, max_rows, adapter.dialect)

        result = await adapter.execute_query(database, limited.sql, max_rows)
        return ToolResponse(
            success=True,
            data=result.to_dict(),
            warnings=validation.warnings or None,
            metadata={
                "connection": adapter.connection_name,
                "database": database,
                "rowCount": result.row_count,
                "executionTimeMs": result.execution_time_ms,
                "limitApplied": limited.limit_applied or result.truncated,
                "truncated": result.truncated,
                "maxRows": max_rows,
                "timestamp": _now(),
            },
        )

    async def _query_plan(self, args: dict[str, Any]) -> ToolResponse:
        adapter = self.connections.get_adapter(args.get("connection"))
        database = self.validator.sanitize_identifier(args["database"])
        sql = args["query"]

        validation = self.validator.validate(sql)
        if not validation.is_valid:
            return ToolResponse.failure(
                QueryValidationError(validation.errors),
                errors=validation.errors,
                warnings=validation.warnings,
            )

        plan = await adapter.get_query_plan(database, sql)
        return ToolResponse(
            success=True,
            data=plan.to_dict(),
            metadata={
                "connection": adapter.connection_name,
                "database": database,
                "format": plan.format,
                "timestamp": _now(),
            },
        )
