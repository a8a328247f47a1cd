"""End-to-end requests through the relay against a local upstream."""
import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer
from multidict import CIMultiDict, CIMultiDictProxy

import hls_relay.web_server
from hls_relay.config import Settings
from hls_relay.web_server import WebServer

PLAYLIST = (
    "#EXTM3U\n"
    "#EXT-X-TARGETDURATION:4\n"
    '#EXT-X-KEY:METHOD=AES-128,URI="key.bin"\n'
    "#EXTINF:4,\n"
    "segment1.ts\n"
)


def make_upstream(seen):

    async def start(request):
        raise web.HTTPFound("/media/live/index.m3u8")

    async def playlist(request):
        seen.append(request.headers.copy())
        if request.headers.get("If-None-Match") == '"v1"':
            return web.Response(status=304, headers={"ETag": '"v1"'})
        return web.Response(text=PLAYLIST, headers={"ETag": '"v1"', "Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT"})

    async def missing(request):
        return web.Response(status=404, text="no such stream")

    app = web.Application()
    app.router.add_get("/start", start)
    app.router.add_get("/media/live/index.m3u8", playlist)
    app.router.add_get("/missing", missing)
    return app


def make_settings(**overrides):
    values = dict(
        default_headers=CIMultiDictProxy(CIMultiDict({"User-Agent": "relay-default", "Cookie": "session=default"})),
        timeout=5,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.mark.asyncio
async def test_health():
    async with TestClient(TestServer(WebServer(make_settings()).app)) as client:
        resp = await client.get("/health")

        assert resp.status == 200
        assert await resp.text() == "ok"


@pytest.mark.asyncio
async def test_missing_url_is_bad_request():
    async with TestClient(TestServer(WebServer(make_settings()).app)) as client:
        resp = await client.get("/playlist")

        assert resp.status == 400
        assert await resp.text() == "Missing query param: url"


@pytest.mark.asyncio
async def test_playlist_is_rewritten_against_final_url():
    seen = []
    async with TestServer(make_upstream(seen)) as upstream:
        async with TestClient(TestServer(WebServer(make_settings()).app)) as client:
            resp = await client.get("/playlist", params={"url": str(upstream.make_url("/start"))})
            body = await resp.text()

        base = str(upstream.make_url("/media/live/"))

    assert resp.status == 200
    assert resp.headers["Content-Type"] == "application/vnd.apple.mpegurl; charset=utf-8"
    assert resp.headers["Cache-Control"] == "no-store, must-revalidate"
    assert resp.headers["ETag"] == '"v1"'
    assert resp.headers["Last-Modified"] == "Wed, 21 Oct 2015 07:28:00 GMT"
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert f'URI="{base}key.bin"' in body
    assert body.split("\n")[4] == f"{base}segment1.ts"


@pytest.mark.asyncio
async def test_headers_are_forwarded_with_overrides():
    seen = []
    async with TestServer(make_upstream(seen)) as upstream:
        async with TestClient(TestServer(WebServer(make_settings()).app)) as client:
            resp = await client.get("/playlist", params={
                "url": str(upstream.make_url("/media/live/index.m3u8")),
                "cookie": "abc",
                "h_x_foo": "bar",
            })

            assert resp.status == 200

    assert seen[0]["Cookie"] == "abc"
    assert seen[0]["X-Foo"] == "bar"
    assert seen[0]["User-Agent"] == "relay-default"
    assert seen[0]["Accept-Encoding"] == "identity"


@pytest.mark.asyncio
async def test_conditional_request_relays_not_modified():
    seen = []
    async with TestServer(make_upstream(seen)) as upstream:
        async with TestClient(TestServer(WebServer(make_settings()).app)) as client:
            resp = await client.get("/playlist", params={
                "url": str(upstream.make_url("/media/live/index.m3u8")),
                "if_none_match": '"v1"',
            })

            assert resp.status == 304
            assert resp.headers["ETag"] == '"v1"'
            assert resp.headers["Cache-Control"] == "no-store, must-revalidate"
            assert await resp.read() == b""


@pytest.mark.asyncio
async def test_upstream_error_is_relayed():
    async with TestServer(make_upstream([])) as upstream:
        async with TestClient(TestServer(WebServer(make_settings()).app)) as client:
            resp = await client.get("/playlist", params={"url": str(upstream.make_url("/missing"))})

            assert resp.status == 404
            assert await resp.text() == "Upstream returned 404\nno such stream"


@pytest.mark.asyncio
async def test_host_off_allowlist_is_forbidden_without_upstream_call(monkeypatch):
    calls = []

    async def fake_fetch(*args, **kwargs):
        calls.append(args)
        raise AssertionError("upstream must not be contacted")

    monkeypatch.setattr(hls_relay.web_server, "fetch", fake_fetch)
    settings = make_settings(allowlist=frozenset({"cdn.example.com"}))

    async with TestClient(TestServer(WebServer(settings).app)) as client:
        resp = await client.get("/playlist", params={"url": "https://other.com/index.m3u8"})

        assert resp.status == 403
        assert await resp.text() == "Origin not allowed by proxy"

    assert calls == []


@pytest.mark.asyncio
async def test_too_many_redirects_is_reported():
    async def loop(request):
        raise web.HTTPFound("/loop")

    upstream_app = web.Application()
    upstream_app.router.add_get("/loop", loop)

    async with TestServer(upstream_app) as upstream:
        async with TestClient(TestServer(WebServer(make_settings(max_redirects=2)).app)) as client:
            resp = await client.get("/playlist", params={"url": str(upstream.make_url("/loop"))})

            assert resp.status == 502
            assert await resp.text() == "Proxy error: Too many redirects (2)"


@pytest.mark.asyncio
async def test_unexpected_failure_is_generic_500(monkeypatch):
    async def broken_fetch(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(hls_relay.web_server, "fetch", broken_fetch)

    async with TestClient(TestServer(WebServer(make_settings()).app)) as client:
        resp = await client.get("/playlist", params={"url": "https://cdn.example.com/index.m3u8"})

        assert resp.status == 500
        assert await resp.text() == "Proxy error: boom"


@pytest.mark.asyncio
async def test_preflight():
    async with TestClient(TestServer(WebServer(make_settings()).app)) as client:
        resp = await client.options("/playlist")

        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Methods"] == "GET, OPTIONS"
