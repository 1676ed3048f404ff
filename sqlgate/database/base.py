"""
Base database adapter interface for SqlGate.

Defines the abstract base class for engine-specific adapters and the
factory that picks the right adapter for a connection descriptor.
Adapters translate catalog rows into the shared models in
``sqlgate.models.schema`` and re-wrap every driver failure into the
gateway's error taxonomy.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping
from datetime import date, datetime, time as dt_time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import UUID

from asyncpg.exceptions import QueryCanceledError
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.sql.elements import TextClause

from sqlgate.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    McpError,
    QueryExecutionError,
    QueryTimeoutError,
)
from sqlgate.models.schema import (
    ColumnInfo,
    ConstraintInfo,
    DatabaseInfo,
    DatabaseType,
    ForeignKeyInfo,
    IndexInfo,
    QueryPlan,
    QueryResult,
    TableInfo,
    TableSchema,
    TargetDescriptor,
)
from sqlgate.utils.logger import get_logger, preview, redact

if TYPE_CHECKING:
    from sqlgate.database.manager import ConnectionManager

logger = get_logger(__name__)

T = TypeVar("T")

PG_QUERY_CANCELED = "57014"
ODBC_TIMEOUT_STATES = ("HYT00", "HYT01")


def literal_sql(sql: str) -> TextClause:
    """
    Wrap user SQL for execution without bind-parameter parsing.

    ``text()`` treats ``:name`` as a bind parameter; user SQL such as
    ``'12:30'::time`` must reach the server unchanged, so colons are escaped.
    """
    return text(sql.replace(":", r"\:"))


def to_jsonable(value: Any) -> Any:
    """Convert a driver value into something ``json.dumps`` accepts."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return str(value)


def _error_chain(exc: BaseException):
    """The error, the driver error SQLAlchemy wrapped, and their causes."""
    seen: set[int] = set()
    pending: list[BaseException | None] = [exc]
    while pending:
        err = pending.pop(0)
        if err is None or id(err) in seen:
            continue
        seen.add(id(err))
        yield err
        if isinstance(err, DBAPIError):
            pending.append(err.orig)
        pending.append(err.__cause__)


def _odbc_sqlstate(err: BaseException) -> str | None:
    # pyodbc errors carry the SQLSTATE as their first argument
    if err.args and isinstance(err.args[0], str) and len(err.args[0]) == 5:
        return err.args[0]
    return None


def _is_timeout(exc: BaseException) -> bool:
    """
    Whether a failure is a timeout, judged by error type and SQLSTATE only.

    Client deadlines raise TimeoutError; PostgreSQL statement timeouts and
    cancels surface as QueryCanceledError (57014); ODBC reports HYT00/HYT01.
    """
    for err in _error_chain(exc):
        if isinstance(err, (asyncio.TimeoutError, TimeoutError, QueryCanceledError)):
            return True
        if getattr(err, "sqlstate", None) == PG_QUERY_CANCELED:
            return True
        if isinstance(err, DBAPIError) and err.orig is not None:
            if _odbc_sqlstate(err.orig) in ODBC_TIMEOUT_STATES:
                return True
    return False


class DatabaseAdapter(ABC):
    """
    Abstract base class for engine-specific database adapters.

    One adapter exists per named connection. It borrows engines from the
    ConnectionManager per database and never owns connections itself.

    Handles, per engine:
    - Catalog queries (databases, tables, columns, indexes, keys, constraints)
    - Streaming execution of validated SELECT statements with a row cap
    - Estimated query plans
    """

    db_type: DatabaseType

    def __init__(
        self,
        connection_name: str,
        descriptor: TargetDescriptor,
        connections: "ConnectionManager",
    ):
        """
        Initialize the adapter.

        Args:
            connection_name: Name of the configured connection
            descriptor: Parsed connection descriptor
            connections: Manager that owns the engines
        """
        self.connection_name = connection_name
        self.descriptor = descriptor
        self.connections = connections

    @property
    def dialect(self) -> DatabaseType:
        return self.descriptor.db_type

    @property
    def default_schema(self) -> str:
        return self.dialect.default_schema

    def resolve_database(self, database: str | None) -> str:
        return database or self.descriptor.default_database

    # ----- public operations -------------------------------------------------

    async def test_connection(self, database: str | None = None) -> None:
        """
        Run ``SELECT 1`` against a database.

        Raises:
            DatabaseConnectionError: if the round trip fails
        """
        database = self.resolve_database(database)
        try:
            await self._guard("test connection", self._fetch_all(database, "SELECT 1"))
        except McpError as e:
            raise DatabaseConnectionError(e.message, db_type=self.dialect.value) from e

    @abstractmethod
    async def list_databases(self) -> list[DatabaseInfo]:
        """List user databases on the server, ordered by name."""
        ...

    @abstractmethod
    async def list_tables(self, database: str, schema: str | None = None) -> list[TableInfo]:
        """
        List tables and views of one schema.

        Args:
            database: Database name
            schema: Schema name (engine default when omitted)

        Returns:
            Tables and views ordered by schema then name
        """
        ...

    async def describe_table(self, database: str, schema: str | None, table: str) -> TableSchema:
        """
        Describe one table's structure.

        The column, index, foreign key and constraint catalog queries run
        concurrently. Column key flags and ``primary_key_columns`` are
        reconciled from the index and foreign key results.

        Raises:
            QueryExecutionError: if the table does not exist or a catalog query fails
        """
        schema = schema or self.default_schema
        columns, indexes, foreign_keys, constraints = await self._guard(
            f"describe table {schema}.{table}",
            asyncio.gather(
                self._fetch_columns(database, schema, table),
                self._fetch_indexes(database, schema, table),
                self._fetch_foreign_keys(database, schema, table),
                self._fetch_constraints(database, schema, table),
            ),
        )

        if not columns:
            raise QueryExecutionError(f"Table {schema}.{table} not found in database '{database}'")

        primary_key = next((ix.columns for ix in indexes if ix.is_primary), None)
        if primary_key is None:
            primary_key = [c.name for c in columns if c.is_primary_key]
        fk_columns = {name for fk in foreign_keys for name in fk.columns}

        columns = [
            c.model_copy(
                update={
                    "is_primary_key": c.is_primary_key or c.name in primary_key,
                    "is_foreign_key": c.is_foreign_key or c.name in fk_columns,
                }
            )
            for c in columns
        ]

        logger.info(
            f"Described {schema}.{table} in {database}: {len(columns)} columns, "
            f"{len(indexes)} indexes, {len(foreign_keys)} foreign keys"
        )
        return TableSchema(
            schema_name=schema,
            table=table,
            columns=columns,
            indexes=indexes,
            foreign_keys=foreign_keys,
            constraints=constraints,
            primary_key_columns=list(primary_key),
        )

    async def execute_query(self, database: str, sql: str, max_rows: int) -> QueryResult:
        """
        Execute an already validated and row-capped statement.

        Rows are streamed and reading stops once ``max_rows`` rows are held;
        ``truncated`` reports whether more rows were available.

        Raises:
            QueryExecutionError: if the engine rejects the statement
            QueryTimeoutError: if the command timeout elapses
        """
        started = time.perf_counter()
        columns, rows, truncated = await self._guard(
            "execute query", self._stream_rows(database, sql, max_rows)
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        logger.info(
            f"Query on {self.connection_name}/{database} returned {len(rows)} rows "
            f"in {elapsed_ms}ms{' (truncated)' if truncated else ''}: {preview(sql)}"
        )
        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            execution_time_ms=elapsed_ms,
            truncated=truncated,
        )

    @abstractmethod
    async def get_query_plan(self, database: str, sql: str) -> QueryPlan:
        """Return the engine's estimated plan without executing the statement."""
        ...

    # ----- catalog hooks -----------------------------------------------------

    @abstractmethod
    async def _fetch_columns(self, database: str, schema: str, table: str) -> list[ColumnInfo]:
        ...

    @abstractmethod
    async def _fetch_indexes(self, database: str, schema: str, table: str) -> list[IndexInfo]:
        ...

    @abstractmethod
    async def _fetch_foreign_keys(
        self, database: str, schema: str, table: str
    ) -> list[ForeignKeyInfo]:
        ...

    @abstractmethod
    async def _fetch_constraints(
        self, database: str, schema: str, table: str
    ) -> list[ConstraintInfo]:
        ...

    # ----- helpers -----------------------------------------------------------

    async def _fetch_all(
        self,
        database: str,
        sql: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run a catalog query and return every row as a dict."""
        connection = await self.connections.get_connection(database, self.connection_name)
        async with connection.engine.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings().all()]

    async def _stream_rows(
        self, database: str, sql: str, max_rows: int
    ) -> tuple[list[str], list[dict[str, Any]], bool]:
        """Stream a user statement, holding at most ``max_rows`` rows."""
        connection = await self.connections.get_connection(database, self.connection_name)
        rows: list[dict[str, Any]] = []
        truncated = False
        async with connection.engine.connect() as conn:
            result = await conn.stream(literal_sql(sql))
            try:
                columns = list(result.keys())
                async for row in result:
                    if len(rows) >= max_rows:
                        truncated = True
                        break
                    rows.append(
                        {name: to_jsonable(value) for name, value in zip(columns, row)}
                    )
            finally:
                await result.close()
        return columns, rows, truncated

    async def _guard(self, operation: str, work: Awaitable[T]) -> T:
        """
        Apply the command timeout and re-wrap driver failures.

        Gateway errors pass through unchanged and cancellation is never
        wrapped. Timeouts become QueryTimeoutError, anything else becomes
        QueryExecutionError with the password redacted.
        """
        timeout = self.descriptor.command_timeout
        try:
            return await asyncio.wait_for(work, timeout=timeout)
        except McpError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if _is_timeout(exc):
                logger.warning(f"{operation} on {self.connection_name} timed out after {timeout}s")
                raise QueryTimeoutError(
                    f"Failed to {operation}: command timed out after {timeout}s",
                    timeout_seconds=timeout,
                ) from exc
            message = redact(
                f"Failed to {operation}: {exc}", [self.descriptor.password.get_secret_value()]
            )
            logger.error(message)
            raise QueryExecutionError(message) from exc


class AdapterFactory:
    """
    Factory for creating engine-specific database adapters.

    Uses the Factory pattern to instantiate the appropriate
    adapter based on the descriptor's database type.
    """

    _adapters: dict[str, type[DatabaseAdapter]] = {}

    @classmethod
    def register(cls, db_type: DatabaseType | str, adapter_class: type[DatabaseAdapter]) -> None:
        """
        Register an adapter class for a database type.

        Args:
            db_type: Database type identifier (e.g., 'postgres', 'mssql')
            adapter_class: Adapter class to register
        """
        key = DatabaseType(db_type).value
        cls._adapters[key] = adapter_class
        logger.debug(f"Registered database adapter for {key}: {adapter_class.__name__}")

    @classmethod
    def create(
        cls,
        connection_name: str,
        descriptor: TargetDescriptor,
        connections: "ConnectionManager",
    ) -> DatabaseAdapter:
        """
        Create an adapter for a named connection.

        Raises:
            ConfigurationError: If no adapter is registered for the database type
        """
        key = descriptor.db_type.value
        if key not in cls._adapters:
            available = ", ".join(cls._adapters) or "none"
            raise ConfigurationError(
                f"No database adapter registered for type '{key}'. Available types: {available}"
            )

        adapter_class = cls._adapters[key]
        logger.debug(f"Creating {adapter_class.__name__} for connection '{connection_name}'")
        return adapter_class(connection_name, descriptor, connections)

    @classmethod
    def get_supported_types(cls) -> list[str]:
        """Get list of supported database types."""
        return list(cls._adapters.keys())
