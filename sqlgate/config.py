"""
Configuration management for SqlGate.

Loads configuration from environment variables with support for .env files.
Uses Pydantic Settings for validation and type coercion.
Named connections are dynamically parsed from SQL_CONN_<NAME> variables.
"""

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqlgate.descriptor import parse_connection_string
from sqlgate.exceptions import ConfigurationError
from sqlgate.models.schema import TargetDescriptor

DEFAULT_CONNECTION_NAME = "default"

_NAMED_CONNECTION = re.compile(r"^sql_conn_([a-zA-Z0-9_]+)$", re.IGNORECASE)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    ``SQL_CONNECTION_STRING`` registers a connection named ``default``;
    each ``SQL_CONN_<NAME>`` registers a connection named ``<name>``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    # Connections
    sql_connection_string: str | None = Field(
        default=None, description="Descriptor for the connection named 'default'"
    )
    connection_strings: dict[str, str] = Field(
        default_factory=dict, description="Named connection descriptors (SQL_CONN_<NAME>)"
    )

    # Query limits
    max_query_length: int = Field(default=50000, description="Maximum SQL length in characters")
    default_max_rows: int = Field(default=1000, description="Row cap when maxRows is omitted")
    max_rows_cap: int = Field(default=10000, description="Hard upper bound for maxRows")

    # Engine pools
    pool_size: int = Field(default=5, description="Pooled connections per engine")
    max_overflow: int = Field(default=10, description="Extra connections beyond pool_size")
    mssql_odbc_driver: str = Field(
        default="ODBC Driver 18 for SQL Server", description="ODBC driver name for SQL Server"
    )

    # HTTP transport
    http_host: str = Field(default="127.0.0.1", description="HTTP bind host")
    http_port: int = Field(default=8000, description="HTTP bind port")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(default=None, description="Log file path")

    @model_validator(mode="before")
    @classmethod
    def parse_named_connections(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Collect SQL_CONN_<NAME> environment variables into connection_strings."""
        env_data = {k.lower(): v for k, v in os.environ.items()}
        merged = {**env_data, **{k.lower(): v for k, v in data.items()}}

        named = dict(data.get("connection_strings") or {})
        for key, value in merged.items():
            match = _NAMED_CONNECTION.match(key)
            if match and value:
                named.setdefault(match.group(1).lower(), value)

        data["connection_strings"] = named
        return data

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return upper_v

    @field_validator("default_max_rows", "max_rows_cap", "max_query_length", "pool_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @property
    def connection_names(self) -> list[str]:
        """Names of every configured connection, without parsing them."""
        names = set(self.connection_strings)
        if self.sql_connection_string:
            names.add(DEFAULT_CONNECTION_NAME)
        return sorted(names)

    def descriptors(self) -> dict[str, TargetDescriptor]:
        """
        Parse every configured connection.

        Raises:
            ConfigurationError: naming the connection whose descriptor is invalid
        """
        raw = dict(self.connection_strings)
        if self.sql_connection_string:
            raw[DEFAULT_CONNECTION_NAME] = self.sql_connection_string

        parsed: dict[str, TargetDescriptor] = {}
        for name, value in sorted(raw.items()):
            try:
                parsed[name] = parse_connection_string(value)
            except ConfigurationError as e:
                raise ConfigurationError(f"Connection '{name}': {e.message}") from e
        return parsed


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from a specific .env file.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Settings: Application settings instance
    """
    get_settings.cache_clear()
    if env_file:
        return Settings(_env_file=str(env_file))
    return get_settings()
