from __future__ import annotations

from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from flowsync._transport import HttpTransport
from flowsync.config import SyncConfig
from flowsync.exceptions import FlowSyncTransportError

SNAPSHOT = {"metrics": {"throughput": 4}, "bottlenecks": [], "suggestions": []}


async def _start(routes: list[web.RouteDef]) -> TestServer:
    app = web.Application()
    app.add_routes(routes)
    server = TestServer(app)
    await server.start_server()
    return server


def _config(server: TestServer, **overrides: Any) -> SyncConfig:
    return SyncConfig(base_url=f"http://{server.host}:{server.port}", **overrides)


@pytest.mark.asyncio
async def test_fetch_snapshot_returns_body_and_sends_token() -> None:
    seen: list[str | None] = []

    async def handler(request: web.Request) -> web.Response:
        seen.append(request.headers.get("Authorization"))
        return web.json_response(SNAPSHOT)

    server = await _start([web.get("/api/flow-optimization/data", handler)])
    try:
        async with aiohttp.ClientSession() as session:
            transport = HttpTransport(_config(server, auth_token="secret"), session)
            body = await transport.fetch_snapshot("flow-optimization")
    finally:
        await server.close()

    assert body == SNAPSHOT
    assert seen == ["Bearer secret"]


@pytest.mark.asyncio
async def test_apply_suggestions_posts_ids() -> None:
    posted: list[Any] = []

    async def handler(request: web.Request) -> web.Response:
        posted.append(await request.json())
        return web.json_response({"success": True, "appliedSuggestions": [], "message": "ok"})

    server = await _start([web.post("/api/flow-optimization/suggestions/apply", handler)])
    try:
        async with aiohttp.ClientSession() as session:
            body = await HttpTransport(_config(server), session).apply_suggestions(["1", "7"])
    finally:
        await server.close()

    assert posted == [{"suggestionIds": ["1", "7"]}]
    assert body["success"] is True


@pytest.mark.asyncio
async def test_non_200_raises_with_status_code() -> None:
    async def handler(_request: web.Request) -> web.Response:
        return web.Response(status=503, text="maintenance")

    server = await _start([web.get("/api/flow-optimization/data", handler)])
    try:
        async with aiohttp.ClientSession() as session:
            with pytest.raises(FlowSyncTransportError) as excinfo:
                await HttpTransport(_config(server), session).fetch_snapshot("flow-optimization")
    finally:
        await server.close()

    assert excinfo.value.status_code == 503
    assert excinfo.value.endpoint == "/api/flow-optimization/data"


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["<html>oops</html>", "[1, 2, 3]"])
async def test_non_object_body_raises(text: str) -> None:
    async def handler(_request: web.Request) -> web.Response:
        return web.Response(status=200, text=text, content_type="application/json")

    server = await _start([web.get("/api/flow-optimization/data", handler)])
    try:
        async with aiohttp.ClientSession() as session:
            with pytest.raises(FlowSyncTransportError):
                await HttpTransport(_config(server), session).fetch_snapshot("flow-optimization")
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_connection_refused_raises_transport_error() -> None:
    server = await _start([])
    config = _config(server)
    await server.close()

    async with aiohttp.ClientSession() as session:
        with pytest.raises(FlowSyncTransportError):
            await HttpTransport(config, session).fetch_snapshot("flow-optimization")
