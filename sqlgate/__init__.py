"""
SqlGate - Read-Only SQL Gateway

Exposes read-only introspection and bounded query access to PostgreSQL
and SQL Server databases as MCP tools, behind a layered SQL validator.
"""

__version__ = "0.1.0"
__author__ = "SqlGate Team"

from sqlgate.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
