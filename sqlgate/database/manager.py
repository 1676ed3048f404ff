"""
Connection registry.

Owns every engine the gateway opens. Engines are created lazily, one per
(named connection, database) pair, and reused until ``close_all``.
Concurrent first requests for the same pair open exactly one engine.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncEngine

from sqlgate.database.base import AdapterFactory, DatabaseAdapter
from sqlgate.database.engine import open_engine
from sqlgate.exceptions import AmbiguousConnectionError, ConfigurationError, NotInitializedError
from sqlgate.models.schema import TargetDescriptor
from sqlgate.utils.logger import get_logger

if TYPE_CHECKING:
    from sqlgate.config import Settings

logger = get_logger(__name__)

EngineOpener = Callable[[TargetDescriptor, str], Awaitable[AsyncEngine]]
AdapterBuilder = Callable[[str, TargetDescriptor, "ConnectionManager"], DatabaseAdapter]


@dataclass(frozen=True)
class ConnectionKey:
    connection_name: str
    database: str


@dataclass
class Connection:
    """A live engine for one database of one named connection."""

    key: ConnectionKey
    descriptor: TargetDescriptor
    engine: AsyncEngine
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionManager:
    """
    Registry of named connections and their per-database engines.

    Usage:
        manager = ConnectionManager({"default": descriptor})
        connection = await manager.get_connection("shop")
        ...
        await manager.close_all()
    """

    def __init__(
        self,
        descriptors: Mapping[str, TargetDescriptor],
        engine_opener: EngineOpener | None = None,
        adapter_builder: AdapterBuilder | None = None,
    ):
        self._descriptors = {name.lower(): d for name, d in descriptors.items()}
        self._open_engine = engine_opener or open_engine
        self._build_adapter = adapter_builder or AdapterFactory.create
        self._connections: dict[ConnectionKey, Connection] = {}
        self._locks: dict[ConnectionKey, asyncio.Lock] = {}
        self._adapters: dict[str, DatabaseAdapter] = {}
        self._closed = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ConnectionManager":
        """Build a manager from every connection in the settings."""
        return cls(settings.descriptors())

    @property
    def connection_names(self) -> list[str]:
        return sorted(self._descriptors)

    @property
    def is_configured(self) -> bool:
        return bool(self._descriptors)

    @property
    def open_connections(self) -> list[ConnectionKey]:
        return list(self._connections)

    def resolve_name(self, connection_name: str | None = None) -> str:
        """
        Pick the named connection a request targets.

        Raises:
            NotInitializedError: if no connection is configured
            AmbiguousConnectionError: if no name is given and several exist
            ConfigurationError: if the name is unknown
        """
        if not self._descriptors:
            raise NotInitializedError()
        if connection_name:
            name = connection_name.lower()
            if name not in self._descriptors:
                raise ConfigurationError(
                    f"Unknown connection '{connection_name}'. "
                    f"Available: {', '.join(self.connection_names)}"
                )
            return name
        if len(self._descriptors) > 1:
            raise AmbiguousConnectionError(self.connection_names)
        return next(iter(self._descriptors))

    def get_descriptor(self, connection_name: str | None = None) -> TargetDescriptor:
        return self._descriptors[self.resolve_name(connection_name)]

    def get_adapter(self, connection_name: str | None = None) -> DatabaseAdapter:
        """Return the (cached) adapter for a named connection."""
        self._ensure_open()
        name = self.resolve_name(connection_name)
        adapter = self._adapters.get(name)
        if adapter is None:
            adapter = self._build_adapter(name, self._descriptors[name], self)
            self._adapters[name] = adapter
        return adapter

    async def get_connection(
        self,
        database: str | None = None,
        connection_name: str | None = None,
    ) -> Connection:
        """
        Return the engine for a database, opening it on first use.

        Raises:
            DatabaseConnectionError: if the engine cannot reach the server;
                nothing is cached, so the next call retries
        """
        self._ensure_open()
        name = self.resolve_name(connection_name)
        descriptor = self._descriptors[name]
        key = ConnectionKey(name, database or descriptor.default_database)

        connection = self._connections.get(key)
        if connection is not None:
            return connection

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            connection = self._connections.get(key)
            if connection is not None:
                return connection

            self._ensure_open()
            logger.debug(f"Opening engine for {key.connection_name}/{key.database}")
            engine = await self._open_engine(descriptor, key.database)
            if self._closed:
                await engine.dispose()
                raise ConfigurationError("Connection manager has been closed")
            connection = Connection(key=key, descriptor=descriptor, engine=engine)
            self._connections[key] = connection
            return connection

    async def close_all(self) -> None:
        """Dispose every engine. The manager refuses further use afterwards."""
        self._closed = True
        connections = list(self._connections.values())
        self._connections.clear()
        self._adapters.clear()

        for connection in connections:
            try:
                await connection.engine.dispose()
            except Exception as e:
                logger.error(
                    f"Failed to close engine for {connection.key.connection_name}/"
                    f"{connection.key.database}: {e}"
                )
        if connections:
            logger.info(f"Closed {len(connections)} database engine(s)")

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConfigurationError("Connection manager has been closed")
