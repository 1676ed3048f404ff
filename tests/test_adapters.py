from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from types import SimpleNamespace

import pytest
from asyncpg.exceptions import QueryCanceledError
from sqlalchemy.exc import DBAPIError

from sqlgate.database import AdapterFactory, PostgresAdapter, SqlServerAdapter
from sqlgate.database import postgresql as pg
from sqlgate.database import sqlserver as ms
from sqlgate.database.base import literal_sql, to_jsonable
from sqlgate.descriptor import parse_connection_string
from sqlgate.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    QueryExecutionError,
    QueryTimeoutError,
)
from sqlgate.models.schema import DatabaseType

_run = asyncio.run

PG = parse_connection_string("type=postgres;host=pg;user=u;password=topsecret;commandTimeout=1")
MSSQL = parse_connection_string("type=mssql;host=ms;user=sa;password=topsecret")


def _fake_fetch(responses: dict[str, list[dict]], calls: list | None = None):
    async def _fetch_all(database, sql, params=None):
        if calls is not None:
            calls.append((database, sql, params))
        return responses.get(sql, [])

    return _fetch_all


ORDERS_PG = {
    pg.COLUMNS_QUERY: [
        {
            "column_name": "id",
            "data_type": "integer",
            "is_nullable": "NO",
            "column_default": "nextval('orders_id_seq'::regclass)",
            "character_maximum_length": None,
            "numeric_precision": 32,
            "numeric_scale": 0,
        },
        {
            "column_name": "customer_id",
            "data_type": "integer",
            "is_nullable": "NO",
            "column_default": None,
            "character_maximum_length": None,
            "numeric_precision": 32,
            "numeric_scale": 0,
        },
        {
            "column_name": "note",
            "data_type": "character varying",
            "is_nullable": "YES",
            "column_default": None,
            "character_maximum_length": 200,
            "numeric_precision": None,
            "numeric_scale": None,
        },
    ],
    pg.INDEXES_QUERY: [
        {
            "index_name": "orders_pkey",
            "column_names": ["id"],
            "is_unique": True,
            "is_primary": True,
            "index_type": "btree",
        }
    ],
    pg.FOREIGN_KEYS_QUERY: [
        {
            "constraint_name": "orders_customer_id_fkey",
            "columns": ["customer_id"],
            "referenced_schema": "public",
            "referenced_table": "customers",
            "referenced_columns": ["id"],
            "update_action": "a",
            "delete_action": "c",
        }
    ],
    pg.CONSTRAINTS_QUERY: [
        {"name": "orders_pkey", "type": "PRIMARY KEY", "definition": "PRIMARY KEY (id)"},
    ],
}


def test_describe_table_reconciles_keys() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)
    calls: list = []
    adapter._fetch_all = _fake_fetch(ORDERS_PG, calls)

    schema = _run(adapter.describe_table("shop", None, "orders"))

    assert schema.schema_name == "public"
    assert schema.primary_key_columns == ["id"]
    by_name = {c.name: c for c in schema.columns}
    assert by_name["id"].is_primary_key and not by_name["id"].is_foreign_key
    assert by_name["customer_id"].is_foreign_key
    assert by_name["note"].nullable and by_name["note"].max_length == 200

    fk = schema.foreign_keys[0]
    assert fk.referenced_table == "customers"
    assert fk.referenced_columns == ["id"]
    assert fk.on_delete == "CASCADE"
    assert fk.on_update == "NO ACTION"
    assert all(call[2] == {"schema": "public", "table": "orders"} for call in calls)


def test_describe_table_wire_shape_is_camel_case() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)
    adapter._fetch_all = _fake_fetch(ORDERS_PG)

    data = _run(adapter.describe_table("shop", "public", "orders")).to_dict()

    assert data["schema"] == "public"
    assert data["primaryKeyColumns"] == ["id"]
    assert data["foreignKeys"][0]["referencedTable"] == "customers"
    assert data["columns"][0]["isPrimaryKey"] is True


def test_describe_missing_table_raises() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)
    adapter._fetch_all = _fake_fetch({})

    with pytest.raises(QueryExecutionError, match="not found"):
        _run(adapter.describe_table("shop", "public", "ghost"))


def test_list_tables_uses_default_schema() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)
    calls: list = []
    adapter._fetch_all = _fake_fetch(
        {
            pg.LIST_TABLES_QUERY: [
                {"schema": "public", "name": "orders", "type": "table", "row_count": 12, "size": "16 kB"},
                {"schema": "public", "name": "order_view", "type": "view", "row_count": None, "size": None},
            ]
        },
        calls,
    )

    tables = _run(adapter.list_tables("shop"))

    assert [t.name for t in tables] == ["orders", "order_view"]
    assert tables[0].row_count == 12
    assert calls[0][2] == {"schema": "public"}


def test_list_databases_uses_default_database() -> None:
    adapter = SqlServerAdapter("crm", MSSQL, connections=None)
    calls: list = []
    adapter._fetch_all = _fake_fetch(
        {ms.LIST_DATABASES_QUERY: [{"name": "crm", "size": "8.00 MB", "owner": "sa", "collation": "Latin1"}]},
        calls,
    )

    databases = _run(adapter.list_databases())

    assert databases[0].name == "crm"
    assert calls[0][0] == "master"


def test_sql_server_index_and_fk_lists_are_split() -> None:
    adapter = SqlServerAdapter("crm", MSSQL, connections=None)
    adapter._fetch_all = _fake_fetch(
        {
            ms.COLUMNS_QUERY: [
                {
                    "name": "OrderId",
                    "data_type": "int",
                    "is_nullable": False,
                    "default_value": None,
                    "max_length": 4,
                    "precision": 10,
                    "scale": 0,
                    "is_primary_key": True,
                    "is_foreign_key": False,
                },
                {
                    "name": "Notes",
                    "data_type": "nvarchar",
                    "is_nullable": True,
                    "default_value": None,
                    "max_length": -1,
                    "precision": 0,
                    "scale": 0,
                    "is_primary_key": False,
                    "is_foreign_key": False,
                },
            ],
            ms.INDEXES_QUERY: [
                {"name": "PK_Orders", "columns": "OrderId", "is_unique": True, "is_primary_key": True, "type_desc": "CLUSTERED"},
                {"name": "IX_Multi", "columns": "A,B", "is_unique": False, "is_primary_key": False, "type_desc": "NONCLUSTERED"},
            ],
            ms.FOREIGN_KEYS_QUERY: [
                {
                    "name": "FK_Orders_Customers",
                    "columns": "CustomerId",
                    "referenced_schema": "dbo",
                    "referenced_table": "Customers",
                    "referenced_columns": "Id",
                    "on_update": "NO_ACTION",
                    "on_delete": "SET_NULL",
                }
            ],
        }
    )

    schema = _run(adapter.describe_table("crm", None, "Orders"))

    assert schema.schema_name == "dbo"
    assert schema.indexes[1].columns == ["A", "B"]
    assert schema.primary_key_columns == ["OrderId"]
    assert schema.foreign_keys[0].on_delete == "SET NULL"
    notes = schema.columns[1]
    assert notes.max_length is None and notes.precision is None


def test_driver_error_wrapped_without_password() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)

    async def _boom(database, sql, params=None):
        raise RuntimeError("auth failed for password topsecret")

    adapter._fetch_all = _boom

    with pytest.raises(QueryExecutionError) as exc_info:
        _run(adapter.list_tables("shop"))

    assert exc_info.value.message.startswith("Failed to list tables")
    assert "topsecret" not in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, RuntimeError)


def test_slow_command_raises_timeout() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)

    async def _slow(database, sql, params=None):
        await asyncio.sleep(5)
        return []

    adapter._fetch_all = _slow

    with pytest.raises(QueryTimeoutError) as exc_info:
        _run(adapter.list_databases())

    assert exc_info.value.code == -32005
    assert exc_info.value.timeout_seconds == 1


def test_gateway_errors_pass_through() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)

    async def _unreachable(database, sql, params=None):
        raise DatabaseConnectionError("Cannot connect")

    adapter._fetch_all = _unreachable

    with pytest.raises(DatabaseConnectionError):
        _run(adapter.list_databases())


def test_test_connection_reports_connection_error() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)

    async def _boom(database, sql, params=None):
        raise OSError("connection refused")

    adapter._fetch_all = _boom

    with pytest.raises(DatabaseConnectionError):
        _run(adapter.test_connection())


def test_execute_query_reports_truncation() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)

    async def _stream(database, sql, max_rows):
        return ["id"], [{"id": i} for i in range(max_rows)], True

    adapter._stream_rows = _stream

    result = _run(adapter.execute_query("shop", "SELECT id FROM t", 3))

    assert result.row_count == 3
    assert result.truncated
    assert result.columns == ["id"]
    assert isinstance(result.execution_time_ms, int)


def test_factory_rejects_unregistered_type(monkeypatch) -> None:
    monkeypatch.setattr(AdapterFactory, "_adapters", {})
    with pytest.raises(ConfigurationError, match="No database adapter registered"):
        AdapterFactory.create("default", PG, None)


def test_factory_knows_both_engines() -> None:
    assert set(AdapterFactory.get_supported_types()) >= {"postgres", "mssql"}
    assert AdapterFactory.create("default", PG, None).dialect is DatabaseType.POSTGRES


def test_fk_action_codes() -> None:
    assert pg.fk_action("r") == "RESTRICT"
    assert pg.fk_action("n") == "SET NULL"
    assert pg.fk_action("z") == "UNKNOWN"


def test_literal_sql_keeps_colons() -> None:
    clause = literal_sql("SELECT '12:30'::time")
    assert clause._bindparams == {}


def test_values_are_made_json_safe() -> None:
    assert to_jsonable(b"\x01\xff") == "01ff"
    assert to_jsonable(Decimal("2")) == 2
    assert to_jsonable(Decimal("2.5")) == 2.5
    assert to_jsonable({"k": [Decimal("1")]}) == {"k": [1]}


class FakeResult:
    def __init__(self, columns=(), rows=(), scalar=None) -> None:
        self.columns = list(columns)
        self.rows = list(rows)
        self.scalar_value = scalar
        self.fetched = 0
        self.closed = False

    def keys(self):
        return self.columns

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for row in self.rows:
            self.fetched += 1
            yield row

    async def close(self) -> None:
        self.closed = True

    def scalar(self):
        return self.scalar_value

    def first(self):
        return self.rows[0] if self.rows else None


class FakeConn:
    def __init__(self, result: FakeResult, fail_on: str | None = None) -> None:
        self.result = result
        self.fail_on = fail_on
        self.statements: list[str] = []
        self.options: dict = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def stream(self, clause):
        self.statements.append(clause.text)
        return self.result

    async def execute(self, clause):
        self.statements.append(clause.text)
        return self.result

    async def execution_options(self, **options):
        self.options.update(options)
        return self

    async def exec_driver_sql(self, sql: str):
        self.statements.append(sql)
        if sql == self.fail_on:
            raise RuntimeError("Invalid object name 'ghost'")
        return self.result


class FakeEngine:
    def __init__(self, conn: FakeConn) -> None:
        self.conn = conn

    def connect(self) -> FakeConn:
        return self.conn


class FakeConnections:
    def __init__(self, conn: FakeConn) -> None:
        self.engine = FakeEngine(conn)

    async def get_connection(self, database=None, connection_name=None):
        return SimpleNamespace(engine=self.engine)


def test_streaming_stops_one_row_past_the_cap() -> None:
    result = FakeResult(columns=["id"], rows=[(i,) for i in range(100)])
    conn = FakeConn(result)
    adapter = PostgresAdapter("default", PG, connections=FakeConnections(conn))

    query = _run(adapter.execute_query("shop", "SELECT id FROM t LIMIT 100", 5))

    assert query.rows == [{"id": i} for i in range(5)]
    assert query.truncated
    assert result.fetched == 6
    assert result.closed
    assert conn.statements == ["SELECT id FROM t LIMIT 100"]


def test_streaming_under_the_cap_is_not_truncated() -> None:
    result = FakeResult(columns=["id", "at"], rows=[(1, Decimal("1.5"))])
    adapter = PostgresAdapter("default", PG, connections=FakeConnections(FakeConn(result)))

    query = _run(adapter.execute_query("shop", "SELECT id, at FROM t LIMIT 10", 10))

    assert query.rows == [{"id": 1, "at": 1.5}]
    assert not query.truncated
    assert result.closed


def test_postgres_plan_wraps_statement_and_decodes_json() -> None:
    plan = [{"Plan": {"Node Type": "Seq Scan"}}]
    conn = FakeConn(FakeResult(scalar=json.dumps(plan)))
    adapter = PostgresAdapter("default", PG, connections=FakeConnections(conn))

    result = _run(adapter.get_query_plan("shop", "SELECT id FROM t;  "))

    assert conn.statements == ["EXPLAIN (FORMAT JSON, ANALYZE false) SELECT id FROM t"]
    assert result.format == "json"
    assert result.plan == plan


def test_sql_server_plan_uses_showplan_in_autocommit() -> None:
    conn = FakeConn(FakeResult(rows=[("<ShowPlanXML/>",)]))
    adapter = SqlServerAdapter("crm", MSSQL, connections=FakeConnections(conn))

    result = _run(adapter.get_query_plan("crm", "SELECT id FROM t"))

    assert conn.options == {"isolation_level": "AUTOCOMMIT"}
    assert conn.statements == ["SET SHOWPLAN_XML ON", "SELECT id FROM t", "SET SHOWPLAN_XML OFF"]
    assert result.format == "xml"
    assert result.plan == "<ShowPlanXML/>"


def test_sql_server_plan_turns_showplan_off_after_failure() -> None:
    conn = FakeConn(FakeResult(), fail_on="SELECT id FROM ghost")
    adapter = SqlServerAdapter("crm", MSSQL, connections=FakeConnections(conn))

    with pytest.raises(QueryExecutionError, match="Invalid object name"):
        _run(adapter.get_query_plan("crm", "SELECT id FROM ghost"))

    assert conn.statements[-1] == "SET SHOWPLAN_XML OFF"


class OdbcError(Exception):
    pass


def _failing_stream(error: Exception):
    async def _stream(database, sql, max_rows):
        raise error

    return _stream


def test_error_mentioning_timeout_is_not_a_timeout() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)
    adapter._stream_rows = _failing_stream(RuntimeError('column "timeout" does not exist'))

    with pytest.raises(QueryExecutionError) as exc_info:
        _run(adapter.execute_query("shop", "SELECT timeout FROM jobs LIMIT 1", 1))

    assert 'column "timeout" does not exist' in exc_info.value.message


def test_postgres_statement_cancel_is_a_timeout() -> None:
    adapter = PostgresAdapter("default", PG, connections=None)
    canceled = QueryCanceledError("canceling statement due to statement timeout")
    adapter._stream_rows = _failing_stream(DBAPIError("SELECT 1", {}, canceled))

    with pytest.raises(QueryTimeoutError):
        _run(adapter.execute_query("shop", "SELECT 1 LIMIT 1", 1))


def test_odbc_timeout_sqlstate_is_a_timeout() -> None:
    adapter = SqlServerAdapter("crm", MSSQL, connections=None)
    expired = OdbcError("HYT00", "[HYT00] Query timeout expired")
    adapter._stream_rows = _failing_stream(DBAPIError("SELECT 1", {}, expired))

    with pytest.raises(QueryTimeoutError):
        _run(adapter.execute_query("crm", "SELECT TOP (1) 1", 1))


def test_odbc_other_sqlstate_is_an_execution_error() -> None:
    adapter = SqlServerAdapter("crm", MSSQL, connections=None)
    missing = OdbcError("42S22", "[42S22] Invalid column name 'timeout'")
    adapter._stream_rows = _failing_stream(DBAPIError("SELECT 1", {}, missing))

    with pytest.raises(QueryExecutionError, match="Invalid column name"):
        _run(adapter.execute_query("crm", "SELECT TOP (1) timeout FROM jobs", 1))
