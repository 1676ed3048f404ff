from __future__ import annotations

import asyncio
import io
import json

from sqlgate.config import Settings
from sqlgate.database.manager import ConnectionManager
from sqlgate.descriptor import parse_connection_string
from sqlgate.models.schema import DatabaseInfo
from sqlgate.server.protocol import McpServer
from sqlgate.server.stdio import StdioTransport
from sqlgate.tools.dispatcher import ToolDispatcher

_run = asyncio.run


def _server() -> McpServer:
    return McpServer(ToolDispatcher(None, settings=Settings(_env_file=None)))


def _request(method: str, params: dict | None = None, request_id: int = 1) -> str:
    payload: dict = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        payload["params"] = params
    return json.dumps(payload)


def test_parse_error() -> None:
    response = _run(_server().handle_message("{not json"))
    assert response["id"] is None
    assert response["error"]["code"] == -32700


def test_invalid_request() -> None:
    assert _run(_server().handle_request([1, 2]))["error"]["code"] == -32600
    assert _run(_server().handle_request({"id": 3}))["error"]["code"] == -32600


def test_method_not_found() -> None:
    response = _run(_server().handle_message(_request("tools/destroy", request_id=9)))
    assert response["id"] == 9
    assert response["error"]["code"] == -32601
    assert "tools/destroy" in response["error"]["message"]


def test_non_object_params_are_invalid() -> None:
    response = _run(_server().handle_request({"jsonrpc": "2.0", "id": 1, "method": "ping", "params": [1]}))
    assert response["error"]["code"] == -32602


def test_notifications_get_no_response() -> None:
    server = _server()
    assert _run(server.handle_request({"jsonrpc": "2.0", "method": "notifications/initialized"})) is None
    assert _run(server.handle_request({"jsonrpc": "2.0", "method": "unknown/notification"})) is None


def test_initialize_reports_capabilities() -> None:
    response = _run(
        _server().handle_message(
            _request("initialize", {"protocolVersion": "2025-03-26", "clientInfo": {"name": "t"}})
        )
    )
    result = response["result"]
    assert result["protocolVersion"] == "2025-03-26"
    assert result["serverInfo"]["name"] == "sqlgate"
    assert set(result["capabilities"]) == {"tools", "prompts", "resources"}


def test_initialize_configures_connections() -> None:
    server = _server()
    assert not server.dispatcher.is_initialized

    response = _run(
        server.handle_message(
            _request(
                "initialize",
                {
                    "initializationOptions": {
                        "connections": {
                            "sales": "type=postgres;host=pg;user=u;password=p",
                            "crm": "type=mssql;host=ms;user=sa;password=p",
                        }
                    }
                },
            )
        )
    )

    assert "result" in response
    assert server.dispatcher.is_initialized
    assert server.dispatcher.connections.connection_names == ["crm", "sales"]


def test_initialize_with_bad_connection_string_is_configuration_error() -> None:
    response = _run(
        _server().handle_message(
            _request("initialize", {"initializationOptions": {"connectionString": "host=h"}})
        )
    )
    assert response["error"]["code"] == -32004
    assert "missing required field: type" in response["error"]["message"]


def test_ping() -> None:
    assert _run(_server().handle_message(_request("ping")))["result"] == {}


def test_tools_list() -> None:
    response = _run(_server().handle_message(_request("tools/list")))
    tools = response["result"]["tools"]
    assert len(tools) == 5
    assert all("inputSchema" in tool for tool in tools)


def test_unknown_tool_is_envelope_error() -> None:
    response = _run(
        _server().handle_message(_request("tools/call", {"name": "sql_nope", "arguments": {}}))
    )
    assert response["error"]["code"] == -32601
    assert response["error"]["message"] == "Tool not found: sql_nope"


def test_missing_argument_is_invalid_params() -> None:
    response = _run(
        _server().handle_message(
            _request("tools/call", {"name": "sql_query", "arguments": {"database": "x"}})
        )
    )
    assert response["error"]["code"] == -32602


def test_tool_call_before_initialize_is_tool_error() -> None:
    response = _run(
        _server().handle_message(_request("tools/call", {"name": "sql_list_databases"}))
    )
    result = response["result"]
    assert result["isError"] is True
    assert json.loads(result["content"][0]["text"])["metadata"]["errorCode"] == "NOT_INITIALIZED"


def test_rejected_query_is_tool_error_not_envelope_error() -> None:
    server = _server()
    _run(
        server.handle_message(
            _request(
                "initialize",
                {"initializationOptions": {"connectionString": "type=postgres;host=pg;user=u;password=p"}},
            )
        )
    )

    response = _run(
        server.handle_message(
            _request(
                "tools/call",
                {"name": "sql_query", "arguments": {"database": "testdb", "query": "DELETE FROM users"}},
            )
        )
    )

    assert "error" not in response
    payload = json.loads(response["result"]["content"][0]["text"])
    assert payload["success"] is False
    assert "Blocked keyword detected: DELETE" in payload["error"]
    assert server.dispatcher.connections.open_connections == []


def test_prompts_list_and_get() -> None:
    server = _server()
    prompts = _run(server.handle_message(_request("prompts/list")))["result"]["prompts"]
    assert [p["name"] for p in prompts] == ["analyze-schema", "query-assistant", "performance-review"]

    result = _run(
        server.handle_message(
            _request("prompts/get", {"name": "performance-review", "arguments": {"database": "shop", "query": "SELECT 1"}})
        )
    )["result"]
    text = result["messages"][0]["content"]["text"]
    assert "SELECT 1" in text and "shop" in text


def test_unknown_prompt() -> None:
    response = _run(_server().handle_message(_request("prompts/get", {"name": "nope"})))
    assert response["error"]["code"] == -32601
    assert "Prompt not found: nope" == response["error"]["message"]


def test_prompt_missing_argument() -> None:
    response = _run(
        _server().handle_message(
            _request("prompts/get", {"name": "query-assistant", "arguments": {"database": "shop"}})
        )
    )
    assert response["error"]["code"] == -32602
    assert "requirement" in response["error"]["message"]


def test_unexpected_error_is_internal_error(monkeypatch) -> None:
    server = _server()

    async def _explode(params):
        raise RuntimeError("kaboom")

    monkeypatch.setitem(server._methods, "ping", _explode)

    response = _run(server.handle_message(_request("ping")))
    assert response["error"]["code"] == -32603
    assert response["error"]["data"] == "kaboom"


def test_stdio_transport_round_trip() -> None:
    lines = "\n".join(
        [
            _request("ping", request_id=1),
            "",
            json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
            _request("tools/list", request_id=2),
        ]
    ) + "\n"
    out = io.StringIO()

    _run(StdioTransport(_server(), reader=io.StringIO(lines), writer=out).run())

    responses = [json.loads(line) for line in out.getvalue().splitlines()]
    assert sorted(r["id"] for r in responses) == [1, 2]


def test_stdio_cancellation_suppresses_response(monkeypatch) -> None:
    server = _server()

    async def _slow(params):
        await asyncio.sleep(10)
        return {}

    monkeypatch.setitem(server._methods, "ping", _slow)
    out = io.StringIO()
    transport = StdioTransport(server, reader=io.StringIO(""), writer=out)

    async def _scenario():
        transport._dispatch(_request("ping", request_id=7))
        await asyncio.sleep(0)
        transport._dispatch(
            json.dumps({"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": 7}})
        )
        await asyncio.gather(*transport._tasks, return_exceptions=True)

    _run(_scenario())

    assert out.getvalue() == ""


def test_non_scalar_id_is_invalid_request() -> None:
    server = _server()
    for bad_id in ([1], {"a": 1}, True):
        response = _run(server.handle_request({"jsonrpc": "2.0", "id": bad_id, "method": "ping"}))
        assert response["id"] is None
        assert response["error"]["code"] == -32600


def test_stdio_survives_malformed_ids() -> None:
    lines = "\n".join(
        [
            json.dumps({"jsonrpc": "2.0", "id": [1], "method": "ping"}),
            json.dumps(
                {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": {"a": 1}}}
            ),
            _request("ping", request_id=2),
        ]
    ) + "\n"
    out = io.StringIO()

    _run(StdioTransport(_server(), reader=io.StringIO(lines), writer=out).run())

    responses = [json.loads(line) for line in out.getvalue().splitlines()]
    by_id = {r["id"]: r for r in responses}
    assert by_id[None]["error"]["code"] == -32600
    assert by_id[2]["result"] == {}


class FakeCatalogAdapter:
    async def list_databases(self):
        return [DatabaseInfo(name="shop", owner="app")]


def _server_with_connections() -> McpServer:
    manager = ConnectionManager(
        {
            "sales": parse_connection_string("type=postgres;host=pg;user=u;password=hunter2"),
            "crm": parse_connection_string("type=mssql;host=ms;user=sa;password=hunter2"),
        },
        adapter_builder=lambda name, descriptor, connections: FakeCatalogAdapter(),
    )
    return McpServer(ToolDispatcher(manager, settings=Settings(_env_file=None)))


def test_resources_list_is_empty_before_initialize() -> None:
    response = _run(_server().handle_message(_request("resources/list")))
    assert response["result"]["resources"] == []


def test_resources_list_covers_every_connection() -> None:
    response = _run(_server_with_connections().handle_message(_request("resources/list")))

    uris = [r["uri"] for r in response["result"]["resources"]]
    assert uris == [
        "sqlgate://crm/connection",
        "sqlgate://crm/databases",
        "sqlgate://sales/connection",
        "sqlgate://sales/databases",
    ]
    assert "hunter2" not in json.dumps(response)


def test_read_connection_resource_hides_password() -> None:
    response = _run(
        _server_with_connections().handle_message(
            _request("resources/read", {"uri": "sqlgate://sales/connection"})
        )
    )

    content = response["result"]["contents"][0]
    facts = json.loads(content["text"])
    assert content["mimeType"] == "application/json"
    assert facts["host"] == "pg"
    assert facts["type"] == "postgres"
    assert "hunter2" not in content["text"]


def test_read_databases_resource() -> None:
    response = _run(
        _server_with_connections().handle_message(
            _request("resources/read", {"uri": "sqlgate://crm/databases"})
        )
    )

    databases = json.loads(response["result"]["contents"][0]["text"])
    assert databases == [{"name": "shop", "owner": "app"}]


def test_read_unknown_resource() -> None:
    server = _server_with_connections()
    for uri in ("sqlgate://ghost/connection", "sqlgate://sales/tables", "postgres://pg/connection"):
        response = _run(server.handle_message(_request("resources/read", {"uri": uri})))
        assert response["error"]["code"] == -32602
        assert response["error"]["message"] == f"Resource not found: {uri}"


def test_read_resource_before_initialize() -> None:
    response = _run(
        _server().handle_message(_request("resources/read", {"uri": "sqlgate://default/connection"}))
    )
    assert response["error"]["code"] == -32006
