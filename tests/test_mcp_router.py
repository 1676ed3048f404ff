from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from sqlgate.config import Settings
from sqlgate.database.manager import ConnectionManager
from sqlgate.descriptor import parse_connection_string
from sqlgate.server.protocol import McpServer
from sqlgate.tools.dispatcher import ToolDispatcher
from sqlgate_api.deps import get_mcp_server_dep
from sqlgate_api.routers import health_router, mcp_router


def _create_client(server: McpServer) -> TestClient:
    app = FastAPI()
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(mcp_router, prefix="/api/v1")
    app.dependency_overrides[get_mcp_server_dep] = lambda: server
    return TestClient(app)


def _configured_server() -> McpServer:
    manager = ConnectionManager(
        {"sales": parse_connection_string("type=postgres;host=pg;user=u;password=hunter2")}
    )
    return McpServer(ToolDispatcher(manager, settings=Settings(_env_file=None)))


def test_health() -> None:
    client = _create_client(_configured_server())
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_ready_lists_connections_without_secrets() -> None:
    client = _create_client(_configured_server())

    resp = client.get("/api/v1/ready")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ready"
    assert body["connections"] == ["sales"]
    assert "hunter2" not in resp.text


def test_ready_when_uninitialized() -> None:
    server = McpServer(ToolDispatcher(None, settings=Settings(_env_file=None)))
    body = _create_client(server).get("/api/v1/ready").json()
    assert body["initialized"] is False
    assert body["connections"] == []


def test_tools_list_over_http() -> None:
    client = _create_client(_configured_server())

    resp = client.post("/api/v1/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"})

    assert resp.status_code == 200
    assert len(resp.json()["result"]["tools"]) == 5


def test_rejected_query_over_http() -> None:
    client = _create_client(_configured_server())

    resp = client.post(
        "/api/v1/mcp",
        json={
            "jsonrpc": "2.0",
            "id": "q1",
            "method": "tools/call",
            "params": {
                "name": "sql_query",
                "arguments": {"database": "testdb", "query": "DELETE FROM users"},
            },
        },
    )

    body = resp.json()
    assert body["id"] == "q1"
    assert body["result"]["isError"] is True
    assert "Blocked keyword detected: DELETE" in body["result"]["content"][0]["text"]


def test_parse_error_over_http() -> None:
    client = _create_client(_configured_server())

    resp = client.post(
        "/api/v1/mcp", content=b"{oops", headers={"content-type": "application/json"}
    )

    assert resp.status_code == 200
    assert resp.json()["error"]["code"] == -32700


def test_notification_is_accepted_without_body() -> None:
    client = _create_client(_configured_server())

    resp = client.post(
        "/api/v1/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"}
    )

    assert resp.status_code == 202
    assert resp.content == b""
