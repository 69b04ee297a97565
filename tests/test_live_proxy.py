from __future__ import annotations

import httpx
import pytest

from tilegate.edge.errors import UpstreamUnavailable
from tilegate.edge.live import USER_AGENT, LiveProxy
from tilegate.edge.paths import ClassifiedPath, PathKind

LIVE_PATH = ClassifiedPath(PathKind.LIVE, "maps/world/live/players.json")


async def _body(outcome) -> bytes:
    if outcome.body is None:
        return b""
    return b"".join([chunk async for chunk in outcome.body])


@pytest.mark.asyncio
async def test_forward_relays_status_body_and_rewrites_cache() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            content=b'{"players":[]}',
            headers={
                "Content-Type": "application/json",
                "Cache-Control": "public, max-age=86400",
                "Set-Cookie": "session=1",
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        proxy = LiveProxy("http://mc.example.com:8100/", client, cache_seconds=3)
        outcome = await proxy.forward("GET", LIVE_PATH, accept="application/json")

    assert str(seen[0].url) == "http://mc.example.com:8100/maps/world/live/players.json"
    assert seen[0].headers["User-Agent"] == USER_AGENT
    assert seen[0].headers["Accept"] == "application/json"
    assert "cookie" not in seen[0].headers
    assert outcome.status == 200
    assert outcome.headers["Cache-Control"] == "public, max-age=3"
    assert outcome.headers["Access-Control-Allow-Origin"] == "*"
    assert outcome.headers["Content-Type"] == "application/json"
    assert "Set-Cookie" not in outcome.headers
    assert await _body(outcome) == b'{"players":[]}'


@pytest.mark.asyncio
async def test_forward_relays_upstream_errors_unchanged() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, content=b"nope")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await LiveProxy("http://mc.example.com", client).forward("GET", LIVE_PATH)

    assert outcome.status == 404
    assert outcome.headers["Cache-Control"] == "public, max-age=5"
    assert await _body(outcome) == b"nope"


@pytest.mark.asyncio
async def test_transport_error_is_upstream_unavailable_without_retry() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamUnavailable):
            await LiveProxy("http://mc.example.com", client).forward("GET", LIVE_PATH)

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_head_forwards_method_and_length() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "HEAD"
        return httpx.Response(200, headers={"Content-Length": "42", "Content-Type": "application/json"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await LiveProxy("http://mc.example.com", client).forward("HEAD", LIVE_PATH)

    assert outcome.status == 200
    assert outcome.headers["Content-Length"] == "42"
    assert outcome.body is None


@pytest.mark.asyncio
async def test_missing_accept_defaults_to_any() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Accept"])
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await LiveProxy("http://mc.example.com", client).forward("GET", LIVE_PATH)

    assert seen == ["*/*"]
    assert outcome.body is None
