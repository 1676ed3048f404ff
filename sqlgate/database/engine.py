"""
SQLAlchemy async engine construction.

One engine (with its own driver-level pool) is built per
(named connection, database) pair. PostgreSQL uses asyncpg, SQL Server
uses aioodbc.
"""

from __future__ import annotations

import asyncio

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from sqlgate.config import get_settings
from sqlgate.exceptions import DatabaseConnectionError
from sqlgate.models.schema import DatabaseType, TargetDescriptor
from sqlgate.utils.logger import get_logger, redact

logger = get_logger(__name__)

APPLICATION_NAME = "sqlgate"


def build_url(descriptor: TargetDescriptor, database: str, odbc_driver: str) -> URL:
    """Build the SQLAlchemy URL for one database on the described server."""
    password = descriptor.password.get_secret_value()
    if descriptor.db_type is DatabaseType.POSTGRES:
        return URL.create(
            "postgresql+asyncpg",
            username=descriptor.user,
            password=password,
            host=descriptor.host,
            port=descriptor.port,
            database=database,
        )
    return URL.create(
        "mssql+aioodbc",
        username=descriptor.user,
        password=password,
        host=descriptor.host,
        port=descriptor.port,
        database=database,
        query={
            "driver": odbc_driver,
            "Encrypt": "yes" if descriptor.ssl else "no",
            "TrustServerCertificate": "yes",
        },
    )


def build_engine(
    descriptor: TargetDescriptor,
    database: str,
    *,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    odbc_driver: str | None = None,
) -> AsyncEngine:
    """
    Create (but do not connect) an async engine for one database.

    PostgreSQL sessions default to read-only transactions and carry a
    server-side command timeout.
    """
    settings = get_settings()
    url = build_url(descriptor, database, odbc_driver or settings.mssql_odbc_driver)

    if descriptor.db_type is DatabaseType.POSTGRES:
        connect_args = {
            "timeout": descriptor.connection_timeout,
            "command_timeout": descriptor.command_timeout,
            "ssl": "require" if descriptor.ssl else "prefer",
            "server_settings": {
                "application_name": APPLICATION_NAME,
                "default_transaction_read_only": "on",
            },
        }
    else:
        connect_args = {"timeout": descriptor.connection_timeout}

    return create_async_engine(
        url,
        pool_size=pool_size or settings.pool_size,
        max_overflow=max_overflow if max_overflow is not None else settings.max_overflow,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


async def open_engine(descriptor: TargetDescriptor, database: str) -> AsyncEngine:
    """
    Build an engine and prove it can reach the server.

    Raises:
        DatabaseConnectionError: if the probe fails or exceeds the connect
            timeout; the password never appears in the message
    """
    engine = build_engine(descriptor, database)
    try:
        await asyncio.wait_for(_probe(engine), timeout=descriptor.connection_timeout)
    except asyncio.CancelledError:
        await engine.dispose()
        raise
    except (asyncio.TimeoutError, TimeoutError) as exc:
        await engine.dispose()
        raise DatabaseConnectionError(
            f"Timed out after {descriptor.connection_timeout}s connecting to "
            f"{descriptor.db_type.value} server {descriptor.host}:{descriptor.port} "
            f"(database '{database}')",
            db_type=descriptor.db_type.value,
        ) from exc
    except Exception as exc:
        await engine.dispose()
        message = redact(
            f"Cannot connect to {descriptor.db_type.value} server "
            f"{descriptor.host}:{descriptor.port} (database '{database}'): {exc}",
            [descriptor.password.get_secret_value()],
        )
        logger.error(message)
        raise DatabaseConnectionError(message, db_type=descriptor.db_type.value) from exc

    logger.info(
        f"Connected to {descriptor.db_type.value} server {descriptor.host}:{descriptor.port} "
        f"(database '{database}')"
    )
    return engine


async def _probe(engine: AsyncEngine) -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
