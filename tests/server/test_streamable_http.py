"""Tests for the per-session Streamable HTTP transport."""

import json
from typing import Any

import anyio
import httpx
import pytest
from starlette.requests import Request
from starlette.types import Message, Receive, Scope, Send

import todo_mcp.types as types
from todo_mcp.server.models import InitializationOptions
from todo_mcp.server.session import InitializationState, ServerSession
from todo_mcp.server.streamable_http import (
    MCP_PROTOCOL_VERSION_HEADER,
    MCP_SESSION_ID_HEADER,
    StreamableHTTPServerTransport,
)
from todo_mcp.server.tools import ToolManager

SESSION_ID = "0123456789abcdef"
JSON_ACCEPT = "application/json"
BOTH_ACCEPT = "application/json, text/event-stream"

INIT_REQUEST = {
    "jsonrpc": "2.0",
    "method": "initialize",
    "id": "init-1",
    "params": {
        "clientInfo": {"name": "test-client", "version": "1.0"},
        "protocolVersion": "2025-03-26",
        "capabilities": {},
    },
}
INITIALIZED_NOTIFICATION = {"jsonrpc": "2.0", "method": "notifications/initialized"}


def make_transport(
    tool_manager: ToolManager, init_options: InitializationOptions, json_response: bool = True
) -> StreamableHTTPServerTransport:
    session = ServerSession(tool_manager, init_options, session_id=SESSION_ID)
    return StreamableHTTPServerTransport(session, SESSION_ID, is_json_response_enabled=json_response)


def make_client(transport: StreamableHTTPServerTransport) -> httpx.AsyncClient:
    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await transport.handle_request(Request(scope, receive), send)

    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://127.0.0.1:4000")


def session_headers(accept: str = JSON_ACCEPT, **extra: str) -> dict[str, str]:
    return {"accept": accept, "content-type": "application/json", MCP_SESSION_ID_HEADER: SESSION_ID, **extra}


async def initialize(client: httpx.AsyncClient, accept: str = JSON_ACCEPT) -> httpx.Response:
    response = await client.post("/mcp", json=INIT_REQUEST, headers={"accept": accept})
    await client.post("/mcp", json=INITIALIZED_NOTIFICATION, headers=session_headers(accept))
    return response


def test_session_id_must_be_visible_ascii(tool_manager: ToolManager, init_options: InitializationOptions):
    session = ServerSession(tool_manager, init_options)
    with pytest.raises(ValueError, match="visible ASCII"):
        StreamableHTTPServerTransport(session, "bad id")


@pytest.mark.anyio
async def test_initialize_json_response(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    async with make_client(transport) as client:
        response = await initialize(client)

    assert response.status_code == 200
    assert response.headers[MCP_SESSION_ID_HEADER] == SESSION_ID
    body = response.json()
    assert body["id"] == "init-1"
    assert body["result"]["serverInfo"]["name"] == "test-server"
    assert transport.session.initialization_state == InitializationState.Initialized


@pytest.mark.anyio
async def test_initialize_sse_response(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options, json_response=False)
    async with make_client(transport) as client:
        response = await client.post("/mcp", json=INIT_REQUEST, headers={"accept": BOTH_ACCEPT})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers[MCP_SESSION_ID_HEADER] == SESSION_ID
    assert "event: message" in response.text
    data_line = next(line for line in response.text.splitlines() if line.startswith("data: "))
    assert json.loads(data_line[len("data: ") :])["id"] == "init-1"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("json_response", "accept"),
    [(False, JSON_ACCEPT), (False, "text/event-stream"), (True, "text/event-stream"), (True, "text/html")],
)
async def test_post_with_unacceptable_accept_header(
    tool_manager: ToolManager, init_options: InitializationOptions, json_response: bool, accept: str
):
    transport = make_transport(tool_manager, init_options, json_response=json_response)
    async with make_client(transport) as client:
        response = await client.post("/mcp", json=INIT_REQUEST, headers={"accept": accept})

    assert response.status_code == 406
    assert transport.session.initialization_state == InitializationState.NotInitialized


@pytest.mark.anyio
@pytest.mark.parametrize("accept", ["*/*", "application/*, text/*"])
async def test_post_with_wildcard_accept(
    tool_manager: ToolManager, init_options: InitializationOptions, accept: str
):
    transport = make_transport(tool_manager, init_options, json_response=False)
    async with make_client(transport) as client:
        response = await client.post("/mcp", json=INIT_REQUEST, headers={"accept": accept})

    assert response.status_code == 200


@pytest.mark.anyio
@pytest.mark.parametrize("body", [b"{not json", b'{"title": "\xff"}'])
async def test_post_invalid_json(tool_manager: ToolManager, init_options: InitializationOptions, body: bytes):
    transport = make_transport(tool_manager, init_options)
    async with make_client(transport) as client:
        response = await client.post("/mcp", content=body, headers=session_headers())

    assert response.status_code == 400
    assert response.json()["error"]["code"] == types.PARSE_ERROR
    assert response.json()["id"] is None


@pytest.mark.anyio
@pytest.mark.parametrize("payload", [[], {"jsonrpc": "1.0", "id": 1, "method": "ping"}, "ping", {"foo": "bar"}])
async def test_post_invalid_envelope(tool_manager: ToolManager, init_options: InitializationOptions, payload: Any):
    transport = make_transport(tool_manager, init_options)
    async with make_client(transport) as client:
        response = await client.post("/mcp", json=payload, headers=session_headers())

    assert response.status_code == 400
    assert response.json()["error"]["code"] == types.INVALID_REQUEST


@pytest.mark.anyio
async def test_batched_initialize_is_rejected(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    ping = {"jsonrpc": "2.0", "id": 2, "method": "ping"}
    async with make_client(transport) as client:
        response = await client.post("/mcp", json=[INIT_REQUEST, ping], headers={"accept": JSON_ACCEPT})

    assert response.status_code == 400
    assert "Only one initialization request" in response.json()["error"]["message"]
    assert transport.session.initialization_state == InitializationState.NotInitialized


@pytest.mark.anyio
async def test_missing_and_mismatched_session_header(
    tool_manager: ToolManager, init_options: InitializationOptions
):
    transport = make_transport(tool_manager, init_options)
    ping = {"jsonrpc": "2.0", "id": 2, "method": "ping"}
    async with make_client(transport) as client:
        await initialize(client)
        missing = await client.post("/mcp", json=ping, headers={"accept": JSON_ACCEPT})
        mismatched = await client.post(
            "/mcp", json=ping, headers={"accept": JSON_ACCEPT, MCP_SESSION_ID_HEADER: "someone-else"}
        )

    assert missing.status_code == 400
    assert mismatched.status_code == 404


@pytest.mark.anyio
async def test_unsupported_protocol_version_header(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    ping = {"jsonrpc": "2.0", "id": 2, "method": "ping"}
    async with make_client(transport) as client:
        await initialize(client)
        bad = await client.post("/mcp", json=ping, headers=session_headers(**{MCP_PROTOCOL_VERSION_HEADER: "1.0"}))
        good = await client.post(
            "/mcp", json=ping, headers=session_headers(**{MCP_PROTOCOL_VERSION_HEADER: "2025-06-18"})
        )

    assert bad.status_code == 400
    assert "Unsupported protocol version" in bad.json()["error"]["message"]
    assert good.status_code == 200


@pytest.mark.anyio
async def test_notification_only_body_is_accepted(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    async with make_client(transport) as client:
        await client.post("/mcp", json=INIT_REQUEST, headers={"accept": JSON_ACCEPT})
        response = await client.post("/mcp", json=INITIALIZED_NOTIFICATION, headers=session_headers())

    assert response.status_code == 202
    assert response.content == b""
    assert transport.session.initialization_state == InitializationState.Initialized


@pytest.mark.anyio
async def test_batch_is_answered_in_order(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    batch = [
        {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "echo", "arguments": {"text": "a"}}},
        {"jsonrpc": "2.0", "method": "notifications/progress"},
        {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "echo", "arguments": {"text": "b"}}},
    ]
    async with make_client(transport) as client:
        await initialize(client)
        response = await client.post("/mcp", json=batch, headers=session_headers())

    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body] == [1, 2]
    assert [item["result"]["content"][0]["text"] for item in body] == ["a", "b"]


@pytest.mark.anyio
async def test_unsupported_method(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    async with make_client(transport) as client:
        response = await client.put("/mcp", headers=session_headers())

    assert response.status_code == 405
    assert response.headers["allow"] == "GET, POST, DELETE"


@pytest.mark.anyio
async def test_delete_terminates_session(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    closed: list[str] = []
    transport.on_close(lambda: closed.append("sync"))

    async def async_callback() -> None:
        closed.append("async")

    transport.on_close(async_callback)

    async with make_client(transport) as client:
        await initialize(client)
        response = await client.delete("/mcp", headers=session_headers())
        after = await client.post(
            "/mcp", json={"jsonrpc": "2.0", "id": 5, "method": "ping"}, headers=session_headers()
        )

    assert response.status_code == 200
    assert transport.is_terminated
    assert closed == ["sync", "async"]
    assert after.status_code == 404


@pytest.mark.anyio
async def test_terminate_is_idempotent_and_survives_failing_callbacks(
    tool_manager: ToolManager, init_options: InitializationOptions
):
    transport = make_transport(tool_manager, init_options)
    calls: list[int] = []

    def failing() -> None:
        raise RuntimeError("callback failed")

    transport.on_close(failing)
    transport.on_close(lambda: calls.append(1))

    await transport.terminate()
    await transport.terminate()

    assert calls == [1]


@pytest.mark.anyio
async def test_get_requires_event_stream(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    async with make_client(transport) as client:
        response = await client.get("/mcp", headers={"accept": JSON_ACCEPT, MCP_SESSION_ID_HEADER: SESSION_ID})

    assert response.status_code == 406


@pytest.mark.anyio
async def test_send_message_without_stream_is_dropped(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options)
    message = types.JSONRPCNotification(jsonrpc="2.0", method="notifications/tools/list_changed")
    assert await transport.send_message(message) is False


def get_scope() -> Scope:
    return {
        "type": "http",
        "method": "GET",
        "path": "/mcp",
        "query_string": b"",
        "headers": [(b"accept", b"text/event-stream"), (MCP_SESSION_ID_HEADER.encode(), SESSION_ID.encode())],
    }


@pytest.mark.anyio
async def test_standalone_stream(tool_manager: ToolManager, init_options: InitializationOptions):
    transport = make_transport(tool_manager, init_options, json_response=False)
    client_gone = anyio.Event()
    delivered = anyio.Event()
    sent: list[Message] = []

    async def receive() -> Message:
        await client_gone.wait()
        return {"type": "http.disconnect"}

    async def send(message: Message) -> None:
        sent.append(message)
        if message["type"] == "http.response.body" and b"list_changed" in message.get("body", b""):
            delivered.set()

    conflicts: list[Message] = []

    async def record_conflict(message: Message) -> None:
        conflicts.append(message)

    async with anyio.create_task_group() as tg:
        tg.start_soon(transport.handle_request, Request(get_scope(), receive), send)

        with anyio.fail_after(5):
            while transport._standalone_stream is None:
                await anyio.sleep(0.01)

            # A second stream for the same session is refused
            await transport.handle_request(Request(get_scope(), receive), record_conflict)

            message = types.JSONRPCNotification(jsonrpc="2.0", method="notifications/tools/list_changed")
            assert await transport.send_message(message) is True
            await delivered.wait()

        # Terminating the session ends the stream
        await transport.terminate()

    assert sent[0]["type"] == "http.response.start"
    assert sent[0]["status"] == 200
    assert conflicts[0]["status"] == 409
    assert transport._standalone_stream is None
