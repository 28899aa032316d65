"""Tests for the proxy module."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from starlette.requests import Request
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from vitebridge.dev.mode import ModeDetector
from vitebridge.dev.proxy import ReverseProxyRouter, filter_headers
from vitebridge.models import Decline, Forward, Upgrade

DEV_SERVER_URL = "http://localhost:5173"


def make_request(
    method: str = "GET",
    path: str = "/",
    *,
    query: bytes = b"",
    headers: list[tuple[bytes, bytes]] | None = None,
    body: bytes = b"",
) -> Request:
    """Build a real Starlette request from an ASGI scope."""
    raw_headers = list(headers or [(b"host", b"testserver")])
    if body:
        raw_headers.append((b"content-length", str(len(body)).encode()))

    async def receive() -> dict[str, object]:
        return {"type": "http.request", "body": body, "more_body": False}

    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "raw_path": path.encode(),
        "query_string": query,
        "headers": raw_headers,
    }
    return Request(scope, receive)


@pytest.fixture
def supervisor() -> Mock:
    sup = Mock()
    sup.base_url = DEV_SERVER_URL
    sup.is_running = Mock(return_value=True)
    return sup


@pytest.fixture
def router(supervisor: Mock) -> ReverseProxyRouter:
    return ReverseProxyRouter(supervisor, ModeDetector({"dev"}))


def upstream_router(
    supervisor: Mock, handler, profiles: set[str] | None = None
) -> ReverseProxyRouter:
    return ReverseProxyRouter(
        supervisor,
        ModeDetector(profiles if profiles is not None else {"dev"}),
        transport=httpx.MockTransport(handler),
    )


class TestDecide:
    """Tests for the routing decision (no I/O)."""

    def test_forward_keeps_path_and_query(self, router: ReverseProxyRouter) -> None:
        decision = router.decide(make_request(path="/assets/app.js", query=b"v=1&t=2"))
        assert decision == Forward(target_url=f"{DEV_SERVER_URL}/assets/app.js?v=1&t=2")

    def test_excluded_prefixes_decline_regardless_of_state(
        self, router: ReverseProxyRouter, supervisor: Mock
    ) -> None:
        for running in (True, False):
            supervisor.is_running.return_value = running
            assert router.decide(make_request(path="/api/users")) == Decline(status_code=404)
            assert router.decide(
                make_request(path="/__vitebridge__/status")
            ) == Decline(status_code=404)

    def test_api_prefix_needs_trailing_slash(self, router: ReverseProxyRouter) -> None:
        assert isinstance(router.decide(make_request(path="/apidocs")), Forward)

    def test_production_declines_everything(self, supervisor: Mock) -> None:
        router = ReverseProxyRouter(supervisor, ModeDetector({"prod"}))
        assert router.decide(make_request(path="/home")) == Decline(status_code=404)

    def test_no_profiles_means_development(self, supervisor: Mock) -> None:
        router = ReverseProxyRouter(supervisor, ModeDetector())
        assert isinstance(router.decide(make_request(path="/home")), Forward)

    def test_not_running_declines_with_503(
        self, router: ReverseProxyRouter, supervisor: Mock
    ) -> None:
        supervisor.is_running.return_value = False
        decision = router.decide(make_request(path="/home"))
        assert isinstance(decision, Decline)
        assert decision.status_code == 503

    def test_upgrade_request(self, router: ReverseProxyRouter) -> None:
        request = make_request(
            path="/",
            headers=[(b"upgrade", b"WebSocket"), (b"connection", b"keep-alive, Upgrade")],
        )
        assert router.decide(request) == Upgrade(target_url=DEV_SERVER_URL)


class TestProxyHttp:
    """Tests for HTTP proxying."""

    @pytest.mark.asyncio
    async def test_not_running_never_touches_network(
        self, router: ReverseProxyRouter, supervisor: Mock
    ) -> None:
        supervisor.is_running.return_value = False
        with patch.object(router, "_get_http_client") as m:
            resp = await router.handle(make_request(path="/home"))
        assert resp.status_code == 503
        assert resp.body == b"Vite dev server is not running"
        m.assert_not_called()

    @pytest.mark.asyncio
    async def test_excluded_path_never_touches_network(
        self, router: ReverseProxyRouter
    ) -> None:
        with patch.object(router, "_get_http_client") as m:
            resp = await router.handle(make_request(path="/api/users"))
        assert resp.status_code == 404
        m.assert_not_called()

    @pytest.mark.asyncio
    async def test_forwards_and_copies_response(self, supervisor: Mock) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                201,
                headers=[
                    ("content-type", "text/html"),
                    ("set-cookie", "a=1"),
                    ("set-cookie", "b=2"),
                    ("connection", "close"),
                ],
                content=b"<html></html>",
            )

        router = upstream_router(supervisor, handler)
        resp = await router.handle(
            make_request(
                path="/home",
                query=b"q=%20x",
                headers=[
                    (b"host", b"testserver"),
                    (b"connection", b"close"),
                    (b"x-test", b"1"),
                ],
            )
        )
        await router.aclose()

        assert resp.status_code == 201
        assert resp.body == b"<html></html>"
        assert resp.headers.getlist("set-cookie") == ["a=1", "b=2"]
        assert resp.headers["content-type"] == "text/html"
        assert "connection" not in resp.headers

        (upstream,) = seen
        assert str(upstream.url) == f"{DEV_SERVER_URL}/home?q=%20x"
        assert upstream.headers["x-test"] == "1"
        assert upstream.headers.get("connection") != "close"
        assert upstream.headers["host"] == "localhost:5173"

    @pytest.mark.asyncio
    async def test_forwards_request_body(self, supervisor: Mock) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200, content=b"ok")

        router = upstream_router(supervisor, handler)
        resp = await router.handle(
            make_request("POST", "/submit", body=b'{"name": "vite"}')
        )
        await router.aclose()
        assert resp.status_code == 200
        assert bodies == [b'{"name": "vite"}']

    @pytest.mark.asyncio
    async def test_body_is_not_decoded(self, supervisor: Mock) -> None:
        payload = b"\x1f\x8b not really gzip"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, headers={"content-encoding": "gzip"}, content=payload
            )

        router = upstream_router(supervisor, handler)
        resp = await router.handle(make_request(path="/bundle.js"))
        await router.aclose()
        assert resp.body == payload
        assert resp.headers["content-encoding"] == "gzip"

    @pytest.mark.asyncio
    async def test_upstream_error_status_is_passed_through(self, supervisor: Mock) -> None:
        router = upstream_router(
            supervisor, lambda request: httpx.Response(500, content=b"boom")
        )
        resp = await router.handle(make_request(path="/broken"))
        await router.aclose()
        assert resp.status_code == 500
        assert resp.body == b"boom"

    @pytest.mark.asyncio
    async def test_transport_error_answers_502(self, supervisor: Mock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        router = upstream_router(supervisor, handler)
        resp = await router.handle(make_request(path="/home"))
        await router.aclose()
        assert resp.status_code == 502
        assert resp.body.startswith(b"Error proxying to Vite dev server:")

    @pytest.mark.asyncio
    async def test_client_disconnect_mid_body_answers_502(self, supervisor: Mock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"unreachable")

        async def receive() -> dict[str, object]:
            return {"type": "http.disconnect"}

        request = make_request("POST", "/submit", body=b"partial")
        request = Request(request.scope, receive)

        router = upstream_router(supervisor, handler)
        resp = await router.handle(request)
        await router.aclose()
        assert resp.status_code == 502
        assert resp.body.startswith(b"Error proxying to Vite dev server:")

    @pytest.mark.asyncio
    async def test_upgrade_answers_101(self, router: ReverseProxyRouter) -> None:
        request = make_request(
            headers=[(b"upgrade", b"websocket"), (b"connection", b"Upgrade")]
        )
        with patch.object(router, "_get_http_client") as m:
            resp = await router.handle(request)
        assert resp.status_code == 101
        m.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, supervisor: Mock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=request.url.path.encode())

        router = upstream_router(supervisor, handler)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=router), base_url="http://testserver"
        ) as client:
            responses = await asyncio.gather(
                *(client.get(f"/page/{i}") for i in range(50))
            )
        await router.aclose()

        assert [r.status_code for r in responses] == [200] * 50
        assert [r.content for r in responses] == [f"/page/{i}".encode() for i in range(50)]


class TestHttpClient:
    """Tests for the pooled HTTP client."""

    @pytest.mark.asyncio
    async def test_http_client_lifecycle(self, router: ReverseProxyRouter) -> None:
        client1 = await router._get_http_client()
        assert client1 is await router._get_http_client()
        await client1.aclose()
        client2 = await router._get_http_client()
        assert client1 is not client2
        await router.aclose()
        assert client2.is_closed
        assert router._http_client is None


class TestFilterHeaders:
    """Tests for hop-by-hop header filtering."""

    def test_drops_excluded_keeps_duplicates(self) -> None:
        raw = [
            (b"Host", b"a"),
            (b"Connection", b"keep-alive"),
            (b"Content-Length", b"3"),
            (b"Transfer-Encoding", b"chunked"),
            (b"X-Test", b"1"),
            (b"x-test", b"2"),
        ]
        assert filter_headers(raw) == [(b"X-Test", b"1"), (b"x-test", b"2")]


class TestProxyWebSocket:
    """Tests for HMR WebSocket handling."""

    def test_accepts_then_closes_with_dev_server_url(self, supervisor: Mock) -> None:
        router = ReverseProxyRouter(supervisor, ModeDetector({"dev"}))
        client = TestClient(router)
        with client.websocket_connect("/") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
        assert exc_info.value.code == 1000
        assert exc_info.value.reason == DEV_SERVER_URL

    def test_declined_socket_is_closed_before_accept(self, supervisor: Mock) -> None:
        router = ReverseProxyRouter(supervisor, ModeDetector({"prod"}))
        client = TestClient(router)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/"):
                pass
        assert exc_info.value.code == 1008

    @pytest.mark.asyncio
    async def test_excluded_socket_is_declined(self, router: ReverseProxyRouter) -> None:
        ws = AsyncMock()
        ws.url.path = "/api/stream"
        ws.headers = {"upgrade": "websocket", "connection": "upgrade"}
        await router.handle_websocket(ws)
        ws.close.assert_awaited_once_with(code=1008)
        ws.accept.assert_not_called()
