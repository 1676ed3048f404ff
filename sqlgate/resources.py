"""
MCP resources for SqlGate.

Each named connection exposes two read-only JSON resources:
``sqlgate://<connection>/connection`` (server facts, never the password)
and ``sqlgate://<connection>/databases`` (the server's user databases).
"""

import json
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

from sqlgate.database.manager import ConnectionManager
from sqlgate.exceptions import NotInitializedError, ResourceNotFoundError
from sqlgate.utils.logger import get_logger

logger = get_logger(__name__)

RESOURCE_SCHEME = "sqlgate"
MIME_TYPE = "application/json"


def resource_uri(connection_name: str, kind: str) -> str:
    return f"{RESOURCE_SCHEME}://{connection_name}/{kind}"


def list_resources(connections: ConnectionManager | None) -> list[dict[str, Any]]:
    """Resources for every configured connection; empty while uninitialized."""
    if connections is None or not connections.is_configured:
        return []

    resources = []
    for name in connections.connection_names:
        summary = connections.get_descriptor(name).safe_summary()
        server = f"{summary['type']} server {summary['host']}:{summary['port']}"
        resources.append(
            {
                "uri": resource_uri(name, "connection"),
                "name": f"{name} connection",
                "description": f"Connection '{name}' to {server}",
                "mimeType": MIME_TYPE,
            }
        )
        resources.append(
            {
                "uri": resource_uri(name, "databases"),
                "name": f"{name} databases",
                "description": f"Databases on {server}",
                "mimeType": MIME_TYPE,
            }
        )
    return resources


async def read_resource(connections: ConnectionManager | None, uri: str) -> dict[str, Any]:
    """
    Read one resource.

    Raises:
        NotInitializedError: if no connection is configured
        ResourceNotFoundError: for a malformed URI, unknown connection or kind
    """
    if connections is None or not connections.is_configured:
        raise NotInitializedError()

    parts = urlsplit(uri)
    name, kind = parts.netloc.lower(), parts.path.strip("/")
    if parts.scheme != RESOURCE_SCHEME or name not in connections.connection_names:
        raise ResourceNotFoundError(uri)

    logger.info(f"Reading resource {uri}")
    if kind == "connection":
        content: Any = {
            "connection": name,
            **connections.get_descriptor(name).safe_summary(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    elif kind == "databases":
        databases = await connections.get_adapter(name).list_databases()
        content = [db.to_dict() for db in databases]
    else:
        raise ResourceNotFoundError(uri)

    return {
        "contents": [
            {"uri": uri, "mimeType": MIME_TYPE, "text": json.dumps(content, indent=2, default=str)}
        ]
    }
