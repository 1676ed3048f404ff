"""
PostgreSQL adapter for SqlGate.

Catalog metadata comes from pg_catalog and information_schema; plans come
from ``EXPLAIN (FORMAT JSON)``, which never executes the statement.
"""

import json

from sqlgate.database.base import AdapterFactory, DatabaseAdapter, literal_sql
from sqlgate.models.schema import (
    ColumnInfo,
    ConstraintInfo,
    DatabaseInfo,
    DatabaseType,
    ForeignKeyInfo,
    IndexInfo,
    QueryPlan,
    TableInfo,
)
from sqlgate.security.validator import strip_terminators
from sqlgate.utils.logger import get_logger

logger = get_logger(__name__)

LIST_DATABASES_QUERY = """
    SELECT
        datname AS name,
        pg_size_pretty(pg_database_size(datname)) AS size,
        pg_catalog.pg_get_userbyid(datdba) AS owner,
        pg_encoding_to_char(encoding) AS encoding,
        datcollate AS collation
    FROM pg_database
    WHERE datistemplate = false
    ORDER BY datname
"""

LIST_TABLES_QUERY = """
    SELECT schema, name, type, row_count, size FROM (
        SELECT
            t.schemaname AS schema,
            t.tablename AS name,
            'table' AS type,
            c.reltuples::bigint AS row_count,
            pg_size_pretty(pg_total_relation_size(c.oid)) AS size
        FROM pg_tables t
        JOIN pg_namespace n ON n.nspname = t.schemaname
        JOIN pg_class c ON c.relname = t.tablename AND c.relnamespace = n.oid
        WHERE t.schemaname = :schema
        UNION ALL
        SELECT
            v.schemaname AS schema,
            v.viewname AS name,
            'view' AS type,
            NULL AS row_count,
            NULL AS size
        FROM pg_views v
        WHERE v.schemaname = :schema
        UNION ALL
        SELECT
            m.schemaname AS schema,
            m.matviewname AS name,
            'materialized_view' AS type,
            NULL AS row_count,
            NULL AS size
        FROM pg_matviews m
        WHERE m.schemaname = :schema
    ) AS objects
    ORDER BY schema, name
"""

COLUMNS_QUERY = """
    SELECT
        column_name,
        data_type,
        is_nullable,
        column_default,
        character_maximum_length,
        numeric_precision,
        numeric_scale
    FROM information_schema.columns
    WHERE table_schema = :schema AND table_name = :table
    ORDER BY ordinal_position
"""

INDEXES_QUERY = """
    SELECT
        i.relname AS index_name,
        array_agg(a.attname ORDER BY array_position(ix.indkey::int2[], a.attnum)) AS column_names,
        ix.indisunique AS is_unique,
        ix.indisprimary AS is_primary,
        am.amname AS index_type
    FROM pg_class t
    JOIN pg_index ix ON t.oid = ix.indrelid
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_am am ON am.oid = i.relam
    JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
    JOIN pg_namespace n ON n.oid = t.relnamespace
    WHERE n.nspname = :schema AND t.relname = :table
    GROUP BY i.relname, ix.indisunique, ix.indisprimary, am.amname
    ORDER BY i.relname
"""

FOREIGN_KEYS_QUERY = """
    SELECT
        con.conname AS constraint_name,
        array_agg(att.attname ORDER BY u.ord) AS columns,
        nsp_ref.nspname AS referenced_schema,
        cls_ref.relname AS referenced_table,
        array_agg(att_ref.attname ORDER BY u.ord) AS referenced_columns,
        con.confupdtype AS update_action,
        con.confdeltype AS delete_action
    FROM pg_constraint con
    JOIN pg_class cls ON con.conrelid = cls.oid
    JOIN pg_namespace nsp ON cls.relnamespace = nsp.oid
    JOIN pg_class cls_ref ON con.confrelid = cls_ref.oid
    JOIN pg_namespace nsp_ref ON cls_ref.relnamespace = nsp_ref.oid
    JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS u(attnum, ord) ON true
    JOIN pg_attribute att ON att.attrelid = con.conrelid AND att.attnum = u.attnum
    JOIN LATERAL unnest(con.confkey) WITH ORDINALITY AS u_ref(attnum, ord) ON u.ord = u_ref.ord
    JOIN pg_attribute att_ref ON att_ref.attrelid = con.confrelid AND att_ref.attnum = u_ref.attnum
    WHERE nsp.nspname = :schema AND cls.relname = :table AND con.contype = 'f'
    GROUP BY con.conname, nsp_ref.nspname, cls_ref.relname, con.confupdtype, con.confdeltype
    ORDER BY con.conname
"""

CONSTRAINTS_QUERY = """
    SELECT
        con.conname AS name,
        CASE con.contype
            WHEN 'c' THEN 'CHECK'
            WHEN 'u' THEN 'UNIQUE'
            WHEN 'p' THEN 'PRIMARY KEY'
            WHEN 'f' THEN 'FOREIGN KEY'
            WHEN 'x' THEN 'EXCLUDE'
            ELSE con.contype::text
        END AS type,
        pg_get_constraintdef(con.oid) AS definition
    FROM pg_constraint con
    JOIN pg_class cls ON con.conrelid = cls.oid
    JOIN pg_namespace nsp ON cls.relnamespace = nsp.oid
    WHERE nsp.nspname = :schema AND cls.relname = :table
    ORDER BY con.conname
"""

FK_ACTIONS = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}


def fk_action(code: str | None) -> str:
    """Map a pg_constraint action code to its SQL name."""
    return FK_ACTIONS.get(code or "", "UNKNOWN")


class PostgresAdapter(DatabaseAdapter):
    """PostgreSQL-specific adapter."""

    db_type = DatabaseType.POSTGRES

    async def list_databases(self) -> list[DatabaseInfo]:
        rows = await self._guard(
            "list databases",
            self._fetch_all(self.descriptor.default_database, LIST_DATABASES_QUERY),
        )
        logger.info(f"Listed {len(rows)} databases on {self.connection_name}")
        return [DatabaseInfo(**row) for row in rows]

    async def list_tables(self, database: str, schema: str | None = None) -> list[TableInfo]:
        schema = schema or self.default_schema
        rows = await self._guard(
            "list tables",
            self._fetch_all(database, LIST_TABLES_QUERY, {"schema": schema}),
        )
        logger.info(f"Listed {len(rows)} tables in {database}.{schema}")
        return [
            TableInfo(
                schema_name=row["schema"],
                name=row["name"],
                type=row["type"],
                row_count=row["row_count"],
                size=row["size"],
            )
            for row in rows
        ]

    async def get_query_plan(self, database: str, sql: str) -> QueryPlan:
        statement = f"EXPLAIN (FORMAT JSON, ANALYZE false) {strip_terminators(sql)}"
        plan = await self._guard("get query plan", self._explain(database, statement))
        logger.info(f"Retrieved query plan on {self.connection_name}/{database}")
        return QueryPlan(format="json", plan=plan)

    async def _explain(self, database: str, statement: str):
        connection = await self.connections.get_connection(database, self.connection_name)
        async with connection.engine.connect() as conn:
            result = await conn.execute(literal_sql(statement))
            plan = result.scalar()
        if isinstance(plan, str):
            plan = json.loads(plan)
        return plan

    async def _fetch_columns(self, database: str, schema: str, table: str) -> list[ColumnInfo]:
        rows = await self._fetch_all(database, COLUMNS_QUERY, {"schema": schema, "table": table})
        return [
            ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default_value=row["column_default"],
                max_length=row["character_maximum_length"],
                precision=row["numeric_precision"],
                scale=row["numeric_scale"],
            )
            for row in rows
        ]

    async def _fetch_indexes(self, database: str, schema: str, table: str) -> list[IndexInfo]:
        rows = await self._fetch_all(database, INDEXES_QUERY, {"schema": schema, "table": table})
        return [
            IndexInfo(
                name=row["index_name"],
                columns=list(row["column_names"] or []),
                is_unique=bool(row["is_unique"]),
                is_primary=bool(row["is_primary"]),
                type=row.get("index_type"),
            )
            for row in rows
        ]

    async def _fetch_foreign_keys(
        self, database: str, schema: str, table: str
    ) -> list[ForeignKeyInfo]:
        rows = await self._fetch_all(
            database, FOREIGN_KEYS_QUERY, {"schema": schema, "table": table}
        )
        return [
            ForeignKeyInfo(
                name=row["constraint_name"],
                columns=list(row["columns"] or []),
                referenced_schema=row["referenced_schema"],
                referenced_table=row["referenced_table"],
                referenced_columns=list(row["referenced_columns"] or []),
                on_update=fk_action(row["update_action"]),
                on_delete=fk_action(row["delete_action"]),
            )
            for row in rows
        ]

    async def _fetch_constraints(
        self, database: str, schema: str, table: str
    ) -> list[ConstraintInfo]:
        rows = await self._fetch_all(
            database, CONSTRAINTS_QUERY, {"schema": schema, "table": table}
        )
        return [ConstraintInfo(**row) for row in rows]


AdapterFactory.register(DatabaseType.POSTGRES, PostgresAdapter)
