"""
SQL Server adapter for SqlGate.

Catalog metadata comes from the sys.* views. Estimated plans use
``SET SHOWPLAN_XML ON``, which returns the plan instead of running the
statement; the SET must be alone in its batch, so the plan is requested on
a dedicated autocommit connection.
"""

from sqlgate.database.base import AdapterFactory, DatabaseAdapter
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
from sqlgate.utils.logger import get_logger

logger = get_logger(__name__)

LIST_DATABASES_QUERY = """
    SELECT
        name,
        CAST(CAST(size * 8.0 / 1024 AS DECIMAL(18, 2)) AS VARCHAR(32)) + ' MB' AS size,
        SUSER_SNAME(owner_sid) AS owner,
        collation_name AS collation
    FROM sys.databases d
    CROSS APPLY (
        SELECT SUM(CAST(mf.size AS BIGINT)) AS size
        FROM sys.master_files mf
        WHERE mf.database_id = d.database_id
    ) files
    WHERE d.database_id > 4
    ORDER BY name
"""

LIST_TABLES_QUERY = """
    SELECT [schema], [name], [type], row_count, size FROM (
        SELECT
            s.name AS [schema],
            t.name AS [name],
            'table' AS [type],
            SUM(CASE WHEN p.index_id IN (0, 1) THEN p.rows ELSE 0 END) AS row_count,
            CAST(CAST(SUM(a.total_pages) * 8.0 / 1024 AS DECIMAL(18, 2)) AS VARCHAR(32)) + ' MB' AS size
        FROM sys.tables t
        INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
        LEFT JOIN sys.partitions p ON t.object_id = p.object_id
        LEFT JOIN sys.allocation_units a ON p.partition_id = a.container_id
        WHERE s.name = :schema
        GROUP BY s.name, t.name
        UNION ALL
        SELECT
            s.name AS [schema],
            v.name AS [name],
            'view' AS [type],
            NULL AS row_count,
            NULL AS size
        FROM sys.views v
        INNER JOIN sys.schemas s ON v.schema_id = s.schema_id
        WHERE s.name = :schema
    ) AS objects
    ORDER BY [schema], [name]
"""

COLUMNS_QUERY = """
    SELECT
        c.name,
        t.name AS data_type,
        c.is_nullable,
        dc.definition AS default_value,
        c.max_length,
        c.precision,
        c.scale,
        CAST(CASE WHEN pk.column_id IS NOT NULL THEN 1 ELSE 0 END AS BIT) AS is_primary_key,
        CAST(CASE WHEN fk.parent_column_id IS NOT NULL THEN 1 ELSE 0 END AS BIT) AS is_foreign_key
    FROM sys.columns c
    INNER JOIN sys.types t ON c.user_type_id = t.user_type_id
    INNER JOIN sys.objects tb ON c.object_id = tb.object_id AND tb.type IN ('U', 'V')
    INNER JOIN sys.schemas s ON tb.schema_id = s.schema_id
    LEFT JOIN (
        SELECT ic.object_id, ic.column_id
        FROM sys.indexes i
        INNER JOIN sys.index_columns ic ON i.object_id = ic.object_id AND i.index_id = ic.index_id
        WHERE i.is_primary_key = 1
    ) pk ON c.object_id = pk.object_id AND c.column_id = pk.column_id
    LEFT JOIN (
        SELECT DISTINCT parent_object_id, parent_column_id FROM sys.foreign_key_columns
    ) fk ON c.object_id = fk.parent_object_id AND c.column_id = fk.parent_column_id
    LEFT JOIN sys.default_constraints dc ON c.default_object_id = dc.object_id
    WHERE s.name = :schema AND tb.name = :table
    ORDER BY c.column_id
"""

INDEXES_QUERY = """
    SELECT
        i.name,
        STRING_AGG(c.name, ',') WITHIN GROUP (ORDER BY ic.key_ordinal) AS columns,
        i.is_unique,
        i.is_primary_key,
        i.type_desc
    FROM sys.indexes i
    INNER JOIN sys.index_columns ic ON i.object_id = ic.object_id AND i.index_id = ic.index_id
    INNER JOIN sys.columns c ON ic.object_id = c.object_id AND ic.column_id = c.column_id
    INNER JOIN sys.tables t ON i.object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE s.name = :schema AND t.name = :table AND ic.is_included_column = 0
    GROUP BY i.name, i.is_unique, i.is_primary_key, i.type_desc
    ORDER BY i.name
"""

FOREIGN_KEYS_QUERY = """
    SELECT
        fk.name,
        STRING_AGG(c.name, ',') WITHIN GROUP (ORDER BY fkc.constraint_column_id) AS columns,
        OBJECT_SCHEMA_NAME(fk.referenced_object_id) AS referenced_schema,
        OBJECT_NAME(fk.referenced_object_id) AS referenced_table,
        STRING_AGG(rc.name, ',') WITHIN GROUP (ORDER BY fkc.constraint_column_id) AS referenced_columns,
        fk.update_referential_action_desc AS on_update,
        fk.delete_referential_action_desc AS on_delete
    FROM sys.foreign_keys fk
    INNER JOIN sys.foreign_key_columns fkc ON fk.object_id = fkc.constraint_object_id
    INNER JOIN sys.columns c ON fkc.parent_object_id = c.object_id AND fkc.parent_column_id = c.column_id
    INNER JOIN sys.columns rc ON fkc.referenced_object_id = rc.object_id AND fkc.referenced_column_id = rc.column_id
    INNER JOIN sys.tables t ON fk.parent_object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE s.name = :schema AND t.name = :table
    GROUP BY fk.name, fk.referenced_object_id, fk.update_referential_action_desc, fk.delete_referential_action_desc
    ORDER BY fk.name
"""

CONSTRAINTS_QUERY = """
    SELECT
        con.name,
        con.type_desc AS type,
        CASE con.type
            WHEN 'C' THEN (SELECT definition FROM sys.check_constraints WHERE object_id = con.object_id)
            WHEN 'D' THEN (SELECT definition FROM sys.default_constraints WHERE object_id = con.object_id)
            ELSE NULL
        END AS definition
    FROM sys.objects con
    INNER JOIN sys.tables t ON con.parent_object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE s.name = :schema AND t.name = :table
      AND con.type IN ('C', 'D', 'PK', 'UQ', 'F')
    ORDER BY con.name
"""


def split_list(value: str | None) -> list[str]:
    """Split a STRING_AGG result back into names."""
    return [part for part in (value or "").split(",") if part]


def referential_action(value: str | None) -> str | None:
    """``SET_NULL`` -> ``SET NULL``."""
    return value.replace("_", " ") if value else value


class SqlServerAdapter(DatabaseAdapter):
    """SQL Server-specific adapter."""

    db_type = DatabaseType.MSSQL

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
        plan = await self._guard("get query plan", self._showplan(database, sql))
        logger.info(f"Retrieved query plan on {self.connection_name}/{database}")
        return QueryPlan(format="xml", plan=plan)

    async def _showplan(self, database: str, sql: str) -> str:
        connection = await self.connections.get_connection(database, self.connection_name)
        async with connection.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.exec_driver_sql("SET SHOWPLAN_XML ON")
            try:
                result = await conn.exec_driver_sql(sql)
                row = result.first()
            finally:
                await conn.exec_driver_sql("SET SHOWPLAN_XML OFF")
        return str(row[0]) if row else ""

    async def _fetch_columns(self, database: str, schema: str, table: str) -> list[ColumnInfo]:
        rows = await self._fetch_all(database, COLUMNS_QUERY, {"schema": schema, "table": table})
        return [
            ColumnInfo(
                name=row["name"],
                data_type=row["data_type"],
                nullable=bool(row["is_nullable"]),
                default_value=row["default_value"],
                # -1 means (max)
                max_length=row["max_length"] if row["max_length"] and row["max_length"] > 0 else None,
                precision=row["precision"] or None,
                scale=row["scale"] if row["precision"] else None,
                is_primary_key=bool(row["is_primary_key"]),
                is_foreign_key=bool(row["is_foreign_key"]),
            )
            for row in rows
        ]

    async def _fetch_indexes(self, database: str, schema: str, table: str) -> list[IndexInfo]:
        rows = await self._fetch_all(database, INDEXES_QUERY, {"schema": schema, "table": table})
        return [
            IndexInfo(
                name=row["name"],
                columns=split_list(row["columns"]),
                is_unique=bool(row["is_unique"]),
                is_primary=bool(row["is_primary_key"]),
                type=row["type_desc"],
            )
            for row in rows
            if row["name"]
        ]

    async def _fetch_foreign_keys(
        self, database: str, schema: str, table: str
    ) -> list[ForeignKeyInfo]:
        rows = await self._fetch_all(
            database, FOREIGN_KEYS_QUERY, {"schema": schema, "table": table}
        )
        return [
            ForeignKeyInfo(
                name=row["name"],
                columns=split_list(row["columns"]),
                referenced_schema=row["referenced_schema"],
                referenced_table=row["referenced_table"],
                referenced_columns=split_list(row["referenced_columns"]),
                on_update=referential_action(row["on_update"]),
                on_delete=referential_action(row["on_delete"]),
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


AdapterFactory.register(DatabaseType.MSSQL, SqlServerAdapter)
