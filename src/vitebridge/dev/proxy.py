"""Mode-aware HTTP reverse proxy in front of the Vite dev server.

For every request the router decides, in order:
- not in development mode -> 404
- path under an excluded prefix (backend API, management) -> 404
- HMR WebSocket upgrade -> 101, the client reconnects to the dev server itself
- dev server not running -> 503 (no network call)
- otherwise forward to the dev server and copy the answer back verbatim

Transport failures answer 502 and are never retried; the browser re-issues
the request on reload.
"""

from __future__ import annotations

from urllib.parse import quote

import httpx
from starlette.requests import ClientDisconnect, HTTPConnection, Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send
from starlette.websockets import WebSocket

from vitebridge.constants import DEFAULT_EXCLUDED_PREFIXES, EXCLUDED_HEADERS
from vitebridge.dev.hmr import HmrUpgradeClassifier
from vitebridge.dev.logging import DevLogComponent, get_logger
from vitebridge.dev.mode import ModeDetector
from vitebridge.dev.state_types import DevServerHandle
from vitebridge.models import Decline, Forward, ProxyDecision, Upgrade

logger = get_logger(DevLogComponent.PROXY)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def filter_headers(raw: list[tuple[bytes, bytes]]) -> list[tuple[bytes, bytes]]:
    """Drop connection/framing headers; keeps order and duplicate names."""
    return [
        (key, value)
        for key, value in raw
        if key.decode("latin-1").lower() not in EXCLUDED_HEADERS
    ]


class ReverseProxyRouter:
    """Routes inbound requests to the supervised dev server.

    Attributes:
        supervisor: Liveness and base URL of the dev server
        mode: Development/production detector
        excluded_prefixes: Paths always owned by the backend
    """

    def __init__(
        self,
        supervisor: DevServerHandle,
        mode: ModeDetector,
        *,
        excluded_prefixes: tuple[str, ...] = DEFAULT_EXCLUDED_PREFIXES,
        classifier: HmrUpgradeClassifier | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.supervisor: DevServerHandle = supervisor
        self.mode: ModeDetector = mode
        self.excluded_prefixes: tuple[str, ...] = excluded_prefixes
        self.classifier: HmrUpgradeClassifier = classifier or HmrUpgradeClassifier()

        # HTTP client with connection pooling
        self._transport: httpx.AsyncBaseTransport | None = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, connect=10.0),
                follow_redirects=False,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                transport=self._transport,
                trust_env=False,
            )
        return self._http_client

    def _is_excluded(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.excluded_prefixes)

    def _target_url(self, conn: HTTPConnection) -> str:
        """Dev server base URL + the original path and query, unchanged."""
        raw_path: bytes | None = conn.scope.get("raw_path")
        # Some servers put the query into raw_path as well; it is re-added below.
        path = (
            raw_path.decode("latin-1").split("?", 1)[0]
            if raw_path
            else quote(conn.scope["path"])
        )
        target_url = f"{self.supervisor.base_url}{path}"
        query_string: bytes = conn.scope.get("query_string", b"")
        if query_string:
            target_url = f"{target_url}?{query_string.decode('latin-1')}"
        return target_url

    def decide(self, conn: HTTPConnection) -> ProxyDecision:
        """Classify a request without performing any I/O."""
        if not self.mode.is_development:
            return Decline(status_code=404)

        if self._is_excluded(conn.url.path):
            return Decline(status_code=404)

        if self.classifier.classify(conn.headers):
            return Upgrade(target_url=self.supervisor.base_url)

        if not self.supervisor.is_running():
            return Decline(status_code=503, reason="Vite dev server is not running")

        return Forward(target_url=self._target_url(conn))

    async def handle(self, request: Request) -> Response:
        """Proxy an HTTP request according to `decide()`.

        Args:
            request: The incoming Starlette request

        Returns:
            Response from the dev server, or a local 404/503/502/101
        """
        decision = self.decide(request)

        if isinstance(decision, Decline):
            if decision.status_code == 503:
                logger.warning(f"{decision.reason}; cannot serve {request.url.path}")
            return Response(
                content=decision.reason,
                status_code=decision.status_code,
                media_type="text/plain",
            )

        if isinstance(decision, Upgrade):
            logger.info(
                f"WebSocket upgrade for HMR - client should connect to: {decision.target_url}"
            )
            return Response(status_code=101)

        return await self._forward(request, decision.target_url)

    async def _forward(self, request: Request, target_url: str) -> Response:
        headers = filter_headers(request.headers.raw)

        # Stream the body through only when the client announced one.
        has_body = (
            "content-length" in request.headers or "transfer-encoding" in request.headers
        )

        logger.debug(f"Proxying {request.method} {request.url.path} to {target_url}")
        try:
            client = await self._get_http_client()
            upstream_request = client.build_request(
                method=request.method,
                url=target_url,
                headers=headers,
                content=request.stream() if has_body else None,
            )
            upstream = await client.send(upstream_request, stream=True)
            try:
                # Raw bytes: no content-encoding or charset decoding.
                body = b"".join([chunk async for chunk in upstream.aiter_raw()])
            finally:
                await upstream.aclose()
        except (httpx.TransportError, ClientDisconnect) as e:
            logger.error(f"Error proxying {request.method} {target_url}: {e!r}")
            return Response(
                content=f"Error proxying to Vite dev server: {e}",
                status_code=502,
                media_type="text/plain",
            )

        response = Response(content=body, status_code=upstream.status_code)
        # ASGI header names are lowercase
        response.raw_headers.extend(
            (key.lower(), value) for key, value in filter_headers(upstream.headers.raw)
        )
        return response

    async def handle_websocket(self, websocket: WebSocket) -> None:
        """Answer HMR sockets with a protocol switch and an immediate close.

        The connection is not tunnelled; the close reason tells the client
        where the dev server lives.
        """
        decision = self.decide(websocket)
        if isinstance(decision, Decline):
            # Closing before accept is answered with HTTP 403 by the server.
            await websocket.close(code=1008)
            return

        logger.info(
            f"WebSocket upgrade for HMR - client should connect to: {self.supervisor.base_url}"
        )
        await websocket.accept()
        await websocket.close(code=1000, reason=self.supervisor.base_url)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "websocket":
            await self.handle_websocket(WebSocket(scope, receive, send))
            return
        response = await self.handle(Request(scope, receive))
        await response(scope, receive, send)

    async def aclose(self) -> None:
        """Close the pooled HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None
