"""
Schema and result models for SqlGate.

Defines the shared shapes every database adapter maps its catalog rows into:
- Target descriptors (where to connect)
- Databases, tables, columns, indexes, foreign keys, constraints
- Query results, query plans and validation results
"""

from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field, SecretStr

from sqlgate.models.base import BaseModel


class DatabaseType(str, Enum):
    """Supported database engines."""

    POSTGRES = "postgres"
    MSSQL = "mssql"

    @property
    def default_port(self) -> int:
        return 5432 if self is DatabaseType.POSTGRES else 1433

    @property
    def default_database(self) -> str:
        return "postgres" if self is DatabaseType.POSTGRES else "master"

    @property
    def default_schema(self) -> str:
        return "public" if self is DatabaseType.POSTGRES else "dbo"


class TargetDescriptor(BaseModel):
    """
    Parsed, immutable description of one database server.

    The password is held as a ``SecretStr`` so it never shows up in
    ``repr()``, logs or serialized output.
    """

    model_config = ConfigDict(frozen=True)

    db_type: DatabaseType = Field(..., alias="type", description="Database engine")
    host: str = Field(..., description="Server host name")
    port: int = Field(..., description="Server port")
    user: str = Field(..., description="Login user")
    password: SecretStr = Field(..., description="Login password")
    database: str | None = Field(default=None, description="Default database name")
    ssl: bool = Field(default=False, description="Require TLS")
    connection_timeout: int = Field(default=30, description="Connect timeout in seconds")
    command_timeout: int = Field(default=30, description="Command timeout in seconds")

    @property
    def default_database(self) -> str:
        """Database used when a caller names none (e.g. listing databases)."""
        return self.database or self.db_type.default_database

    def safe_summary(self) -> dict[str, Any]:
        """Connection facts that are safe to log or display."""
        return {
            "type": self.db_type.value,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "database": self.database,
            "ssl": self.ssl,
        }


class DatabaseInfo(BaseModel):
    name: str
    size: str | None = None
    owner: str | None = None
    encoding: str | None = None
    collation: str | None = None


class TableInfo(BaseModel):
    schema_name: str = Field(..., alias="schema")
    name: str
    type: str = Field(default="table", description="table, view or materialized_view")
    row_count: int | None = None
    size: str | None = None


class ColumnInfo(BaseModel):
    name: str
    data_type: str
    nullable: bool = True
    default_value: str | None = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None


class IndexInfo(BaseModel):
    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    type: str | None = None


class ForeignKeyInfo(BaseModel):
    name: str
    columns: list[str] = Field(default_factory=list)
    referenced_schema: str
    referenced_table: str
    referenced_columns: list[str] = Field(default_factory=list)
    on_delete: str | None = None
    on_update: str | None = None


class ConstraintInfo(BaseModel):
    name: str
    type: str
    definition: str | None = None


class TableSchema(BaseModel):
    """
    Read-only snapshot of one table's structure.

    Assembled from several catalog queries; ``primary_key_columns`` keeps
    key order as declared by the engine.
    """

    schema_name: str = Field(..., alias="schema")
    table: str
    columns: list[ColumnInfo] = Field(default_factory=list)
    indexes: list[IndexInfo] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyInfo] = Field(default_factory=list)
    constraints: list[ConstraintInfo] = Field(default_factory=list)
    primary_key_columns: list[str] = Field(default_factory=list)


class QueryResult(BaseModel):
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    execution_time_ms: int = 0
    truncated: bool = False


class QueryPlan(BaseModel):
    format: str = Field(..., description="json (PostgreSQL) or xml (SQL Server)")
    plan: Any = None


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class RowLimitResult(BaseModel):
    sql: str
    limit_applied: bool = False
