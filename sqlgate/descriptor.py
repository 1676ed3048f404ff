"""
Connection descriptor parsing.

Turns a compact ``key=value;key=value`` string into a TargetDescriptor:

    type=postgres;host=localhost;port=5432;user=app;password=secret;database=shop

Keys are case-insensitive and several synonyms are accepted per field so
ADO.NET-style strings (``Server=...;User Id=...;Initial Catalog=...``) work too.
"""

from __future__ import annotations

from sqlgate.exceptions import ConfigurationError
from sqlgate.models.schema import DatabaseType, TargetDescriptor

_KEY_SYNONYMS: dict[str, tuple[str, ...]] = {
    "type": ("type", "dbtype"),
    "host": ("host", "server", "data source"),
    "port": ("port",),
    "user": ("user", "username", "user id", "uid"),
    "password": ("password", "pwd"),
    "database": ("database", "initial catalog"),
    "ssl": ("ssl", "encrypt"),
    "connection_timeout": ("connectiontimeout", "connect timeout", "connection timeout"),
    "command_timeout": ("commandtimeout", "request timeout", "command timeout"),
}

_TYPE_ALIASES = {
    "postgres": DatabaseType.POSTGRES,
    "postgresql": DatabaseType.POSTGRES,
    "mssql": DatabaseType.MSSQL,
    "sqlserver": DatabaseType.MSSQL,
}

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}

REQUIRED_FIELDS = ("type", "host", "user", "password")

DEFAULT_TIMEOUT_SECONDS = 30


def split_segments(raw: str) -> dict[str, str]:
    """
    Split a descriptor string into lower-cased keys and trimmed values.

    Empty segments and segments without ``=`` are ignored; values may
    themselves contain ``=``. Later keys win over earlier ones.
    """
    pairs: dict[str, str] = {}
    for segment in raw.split(";"):
        if "=" not in segment:
            continue
        key, value = segment.split("=", 1)
        key = " ".join(key.split()).lower()
        if key:
            pairs[key] = value.strip()
    return pairs


def _lookup(pairs: dict[str, str], field: str) -> str | None:
    for key in _KEY_SYNONYMS[field]:
        value = pairs.get(key)
        if value:
            return value
    return None


def _parse_int(field: str, value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise ConfigurationError(f"Invalid {field}: {value!r} is not an integer") from None
    if number <= 0:
        raise ConfigurationError(f"Invalid {field}: must be a positive integer")
    return number


def _parse_bool(field: str, value: str | None) -> bool:
    if value is None:
        return False
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid {field}: expected true/false/1/0, got {value!r}")


def parse_connection_string(raw: str) -> TargetDescriptor:
    """
    Parse a descriptor string.

    Args:
        raw: ``key=value`` pairs separated by ``;``

    Returns:
        Immutable TargetDescriptor with engine defaults filled in

    Raises:
        ConfigurationError: on an empty string, the first missing required
            field (type, host, user, password, in that order), an unknown
            engine type or a malformed number/boolean
    """
    if not raw or not raw.strip():
        raise ConfigurationError("Connection string cannot be empty")

    pairs = split_segments(raw)
    values = {field: _lookup(pairs, field) for field in _KEY_SYNONYMS}

    for field in REQUIRED_FIELDS:
        if not values[field]:
            raise ConfigurationError(f"Connection string is missing required field: {field}")

    type_name = values["type"].lower()
    db_type = _TYPE_ALIASES.get(type_name)
    if db_type is None:
        raise ConfigurationError(
            f"Unsupported database type: {type_name}. Must be 'postgres' or 'mssql'"
        )

    port = _parse_int("port", values["port"]) if values["port"] else db_type.default_port

    return TargetDescriptor(
        db_type=db_type,
        host=values["host"],
        port=port,
        user=values["user"],
        password=values["password"],
        database=values["database"],
        ssl=_parse_bool("ssl", values["ssl"]),
        connection_timeout=(
            _parse_int("connection timeout", values["connection_timeout"])
            if values["connection_timeout"]
            else DEFAULT_TIMEOUT_SECONDS
        ),
        command_timeout=(
            _parse_int("command timeout", values["command_timeout"])
            if values["command_timeout"]
            else DEFAULT_TIMEOUT_SECONDS
        ),
    )
