"""Tests for the WebSocket transport against a local ``websockets`` server."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest
import websockets

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gitpod_client.config import ClientSettings  # noqa: E402
from gitpod_client.protocol import TransportError  # noqa: E402
from gitpod_client.service import connect  # noqa: E402
from gitpod_client.transport import WebSocketTransport  # noqa: E402

TOKEN = "test-token"


async def _json_rpc_handler(connection) -> None:
    seen_headers = {
        "authorization": connection.request.headers.get("Authorization"),
        "origin": connection.request.headers.get("Origin"),
        "user-agent": connection.request.headers.get("User-Agent"),
        "path": connection.request.path,
    }
    async for raw in connection:
        message = json.loads(raw)
        if message.get("method") == "getLoggedInUser":
            result = {"id": "user-1", "name": "ada", "additionalData": {"headers": seen_headers}}
            await connection.send(json.dumps({"jsonrpc": "2.0", "id": message["id"], "result": result}))
        elif message.get("method") == "getWorkspaces":
            await connection.send(json.dumps({"jsonrpc": "2.0", "id": message["id"], "result": []}))


def _reject_unauthenticated(connection, request):
    if request.headers.get("Authorization") != f"Bearer {TOKEN}":
        return connection.respond(401, "Unauthorized\n")
    return None


def test_client_over_websocket_sends_auth_headers() -> None:
    async def scenario():
        async with websockets.serve(
            _json_rpc_handler, "127.0.0.1", 0, process_request=_reject_unauthenticated
        ) as server:
            port = server.sockets[0].getsockname()[1]
            settings = ClientSettings(host=f"127.0.0.1:{port}", token=TOKEN, use_tls=False, user_agent="tests/1.0")
            client = await connect(settings)
            try:
                user = await asyncio.wait_for(client.get_logged_in_user(), 5)
                workspaces = await asyncio.wait_for(client.get_workspaces(), 5)
            finally:
                await client.close()
            return port, user, workspaces

    port, user, workspaces = asyncio.run(scenario())
    headers = user.additional_data["headers"]
    assert headers["authorization"] == f"Bearer {TOKEN}"
    assert headers["origin"] == f"http://127.0.0.1:{port}/"
    assert headers["user-agent"] == "tests/1.0"
    assert headers["path"] == "/api/v1"
    assert workspaces == []


def test_rejected_handshake_reports_authentication_failure() -> None:
    async def scenario():
        async with websockets.serve(
            _json_rpc_handler, "127.0.0.1", 0, process_request=_reject_unauthenticated
        ) as server:
            port = server.sockets[0].getsockname()[1]
            await WebSocketTransport.connect(f"ws://127.0.0.1:{port}/api/v1", token="wrong")

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(scenario())
    assert "status 401" in str(excinfo.value)


def test_unreachable_host_raises_transport_error() -> None:
    async def scenario():
        server = await websockets.serve(_json_rpc_handler, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()
        await WebSocketTransport.connect(f"ws://127.0.0.1:{port}/api/v1", open_timeout=2)

    with pytest.raises(TransportError):
        asyncio.run(scenario())


def test_receive_returns_none_after_server_closes() -> None:
    async def close_immediately(connection) -> None:
        await connection.close()

    async def scenario():
        async with websockets.serve(close_immediately, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            transport = await WebSocketTransport.connect(f"ws://127.0.0.1:{port}/api/v1")
            first = await asyncio.wait_for(transport.receive(), 5)
            with pytest.raises(TransportError):
                await transport.send("{}")
            await transport.close()
            return first, transport.closed

    first, closed = asyncio.run(scenario())
    assert first is None
    assert closed is True
