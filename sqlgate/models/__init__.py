"""Models package for SqlGate."""

from sqlgate.models.base import BaseModel
from sqlgate.models.schema import (
    ColumnInfo,
    ConstraintInfo,
    DatabaseInfo,
    DatabaseType,
    ForeignKeyInfo,
    IndexInfo,
    QueryPlan,
    QueryResult,
    RowLimitResult,
    TableInfo,
    TableSchema,
    TargetDescriptor,
    ValidationResult,
)

__all__ = [
    "BaseModel",
    "ColumnInfo",
    "ConstraintInfo",
    "DatabaseInfo",
    "DatabaseType",
    "ForeignKeyInfo",
    "IndexInfo",
    "QueryPlan",
    "QueryResult",
    "RowLimitResult",
    "TableInfo",
    "TableSchema",
    "TargetDescriptor",
    "ValidationResult",
]
