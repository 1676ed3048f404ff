"""
Database access for SqlGate.

Importing this package registers the PostgreSQL and SQL Server adapters
with the AdapterFactory.
"""

from sqlgate.database.base import AdapterFactory, DatabaseAdapter
from sqlgate.database.manager import Connection, ConnectionKey, ConnectionManager
from sqlgate.database.postgresql import PostgresAdapter
from sqlgate.database.sqlserver import SqlServerAdapter

__all__ = [
    "AdapterFactory",
    "Connection",
    "ConnectionKey",
    "ConnectionManager",
    "DatabaseAdapter",
    "PostgresAdapter",
    "SqlServerAdapter",
]
