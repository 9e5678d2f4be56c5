"""Tests unitaires — routes HTTP (session bridge simulée, client ASGI httpx)."""

from __future__ import annotations

from typing import AsyncGenerator

import httpx
import pytest
from fastapi import FastAPI

from mcp_stdio_proxy.api.errors import bridge_error_payload
from mcp_stdio_proxy.config.settings import Settings
from mcp_stdio_proxy.core.exceptions import (
    DuplicateIdError,
    NotReadyError,
    ProcessClosedError,
    RequestTimeoutError,
    SpawnError,
    WriteError,
)
from mcp_stdio_proxy.features.bridge import BridgeMonitor
from mcp_stdio_proxy.main import create_app


class _FakeSession:
    """Double de BridgeSession: enregistre les appels, renvoie des réponses scriptées."""

    def __init__(self, *, ready: bool = True) -> None:
        self.ready = ready
        self.calls: list[tuple[str, object, object, object]] = []
        self.error: Exception | None = None
        self.monitor = BridgeMonitor(enabled=False)

    def is_ready(self) -> bool:
        return self.ready

    def status(self) -> dict[str, object]:
        return {"ready": self.ready, "state": "ready" if self.ready else "booting", "pending": 0}

    async def invoke(self, method, params=None, *, request_id=None, timeout_s=None):
        self.calls.append((method, params, request_id, timeout_s))
        if self.error is not None:
            raise self.error
        return {"jsonrpc": "2.0", "id": request_id or "gen-1", "result": {"method": method, "params": params}}

    async def list_tools(self):
        return await self.invoke("tools/list")

    async def call_tool(self, name, arguments=None):
        return await self.invoke("tools/call", {"name": name, "arguments": arguments or {}}, timeout_s=30.0)


@pytest.fixture
def fake_session() -> _FakeSession:
    return _FakeSession()


@pytest.fixture
def app(fake_session: _FakeSession) -> FastAPI:
    return create_app(Settings.from_config({}, apply_env=False), session=fake_session)


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
@pytest.mark.unit
async def test_health_reports_readiness(async_client: httpx.AsyncClient, fake_session: _FakeSession):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["mcpReady"] is True
    assert body["timestamp"]
    assert body["bridge"]["state"] == "ready"

    fake_session.ready = False
    body = (await async_client.get("/health")).json()
    assert body["mcpReady"] is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mcp_proxy_forwards_method_params_and_id(async_client: httpx.AsyncClient, fake_session: _FakeSession):
    resp = await async_client.post("/mcp", json={"method": "tools/list", "params": {"a": 1}, "id": "c-1"})
    assert resp.status_code == 200
    assert resp.json() == {"jsonrpc": "2.0", "id": "c-1", "result": {"method": "tools/list", "params": {"a": 1}}}
    assert fake_session.calls == [("tools/list", {"a": 1}, "c-1", None)]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mcp_proxy_defaults_params_to_empty_object(async_client: httpx.AsyncClient, fake_session: _FakeSession):
    await async_client.post("/mcp", json={"method": "tools/list"})
    assert fake_session.calls[0][1] == {}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mcp_proxy_missing_method_returns_400(async_client: httpx.AsyncClient, fake_session: _FakeSession):
    resp = await async_client.post("/mcp", json={"params": {}})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing method parameter"}

    resp = await async_client.post("/mcp", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert fake_session.calls == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mcp_proxy_not_ready_returns_503(async_client: httpx.AsyncClient, fake_session: _FakeSession):
    fake_session.ready = False
    resp = await async_client.post("/mcp", json={"method": "tools/list"})
    assert resp.status_code == 503
    body = resp.json()
    assert body["error"] == "MCP server not ready"
    assert "Please wait for the MCP server to initialize" in body["message"]
    assert body["retryable"] is True
    assert fake_session.calls == []


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "error, status",
    [
        (RequestTimeoutError("MCP response timeout", request_id="x"), 504),
        (ProcessClosedError("fermé", returncode=1), 502),
        (WriteError("stdin fermé"), 502),
        (DuplicateIdError("déjà en vol", request_id="x"), 409),
        (NotReadyError(state="exited"), 503),
    ],
)
async def test_mcp_proxy_maps_bridge_errors(async_client: httpx.AsyncClient, fake_session: _FakeSession, error, status):
    fake_session.error = error
    resp = await async_client.post("/mcp", json={"method": "tools/list"})
    assert resp.status_code == status
    assert resp.json()["code"] == error.code


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_tools_route(async_client: httpx.AsyncClient, fake_session: _FakeSession):
    resp = await async_client.get("/tools")
    assert resp.status_code == 200
    assert fake_session.calls == [("tools/list", None, None, None)]

    fake_session.error = RequestTimeoutError("MCP response timeout")
    resp = await async_client.get("/tools")
    assert resp.status_code == 504
    assert resp.json()["error"] == "MCP response timeout"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_execute_tool_route(async_client: httpx.AsyncClient, fake_session: _FakeSession):
    resp = await async_client.post("/tools/list_problems", json={"arguments": {"timeframe": "2h"}})
    assert resp.status_code == 200
    assert fake_session.calls == [
        ("tools/call", {"name": "list_problems", "arguments": {"timeframe": "2h"}}, None, 30.0)
    ]

    resp = await async_client.post("/tools/list_problems", json={"arguments": "nope"})
    assert resp.status_code == 400


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_session_is_reported_as_503(fake_session: _FakeSession):
    app = create_app(Settings.from_config({}, apply_env=False), session=fake_session)
    app.state.bridge = None
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/tools")
    assert resp.status_code == 503
    assert resp.json()["code"] == "not_ready"


@pytest.mark.unit
def test_unmapped_bridge_error_is_500():
    status, payload = bridge_error_payload(SpawnError("échec"))
    assert status == 500
    assert payload["error"] == "Internal server error"
    assert payload["code"] == "spawn_error"
