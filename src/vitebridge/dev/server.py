"""Composition root: wires the dev bridge into an ASGI (FastAPI) application.

Architecture:
- DevServerConfig -> ProcessSupervisor -> ModeDetector -> ReverseProxyRouter,
  built in dependency order and owned by a single `BridgeState`
- The supervisor is started as the last step of the app's startup (lifespan),
  after the host application's own startup, and stopped on every exit path
- Management endpoints live under /__vitebridge__/ and are never proxied
- In production, the Vite build output is served as static files instead
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Annotated, Any

import httpx
import uvicorn
from fastapi import FastAPI, Query
from starlette.staticfiles import StaticFiles

from vitebridge.constants import MANAGEMENT_PREFIX
from vitebridge.dev.errors import StartError
from vitebridge.dev.logging import (
    DevLogComponent,
    LogBuffer,
    configure_dev_logging,
    get_log_buffer,
    get_logger,
    new_log_buffer,
)
from vitebridge.dev.mode import ModeDetector
from vitebridge.dev.proxy import PROXY_METHODS, ReverseProxyRouter
from vitebridge.dev.supervisor import ProcessSupervisor
from vitebridge.models import DevServerConfig, LogEntry, StatusResponse

logger = get_logger(DevLogComponent.SERVER)


class BridgeState:
    """Everything the bridge owns for one application lifetime."""

    def __init__(
        self,
        config: DevServerConfig,
        mode: ModeDetector,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config: DevServerConfig = config
        self.supervisor: ProcessSupervisor = ProcessSupervisor(config)
        self.mode: ModeDetector = mode
        self.router: ReverseProxyRouter = ReverseProxyRouter(
            self.supervisor,
            mode,
            excluded_prefixes=config.excluded_prefixes,
            transport=transport,
        )

    @property
    def should_start(self) -> bool:
        return self.config.enabled and self.config.auto_start and self.mode.is_development

    @property
    def serves_static(self) -> bool:
        return (
            self.config.enabled
            and self.mode.is_production
            and self.config.build_path.is_dir()
        )

    def status(self) -> StatusResponse:
        return StatusResponse(
            state=self.supervisor.state,
            running=self.supervisor.is_running(),
            pid=self.supervisor.pid,
            dev_server_url=self.config.dev_server_url,
            working_dir=str(self.config.working_dir),
            development=self.mode.is_development,
        )


@asynccontextmanager
async def bridge_lifespan(state: BridgeState) -> AsyncIterator[None]:
    """Start the dev server on entry and always stop it on exit."""
    config = state.config
    logger.info("Vite integration initialized")
    logger.info(f"Vite dev server URL: {config.dev_server_url}")
    logger.info(f"Frontend directory: {config.working_dir}")
    logger.info(f"Build directory: {config.build_path}")

    try:
        if state.should_start:
            try:
                await state.supervisor.start()
            except StartError as e:
                if config.required:
                    logger.error(f"Vite dev server failed to start: {e}")
                    raise
                logger.warning(f"Vite dev server unavailable, proxying will answer 503: {e}")
        elif not config.enabled:
            logger.info("Vite integration is disabled")
        elif not state.mode.is_development:
            logger.info("Not in development mode; Vite dev server will not be started")
        else:
            logger.info("Vite dev server auto-start is disabled")
        yield
    finally:
        await state.supervisor.stop()
        await state.router.aclose()


def _install_lifespan(app: FastAPI, state: BridgeState) -> None:
    """Wrap the app's lifespan so the bridge starts after the app's own startup."""
    original_lifespan = app.router.lifespan_context

    @asynccontextmanager
    async def wrapped_lifespan(wrapped_app: FastAPI) -> AsyncIterator[Any]:  # pyright: ignore[reportExplicitAny]
        async with original_lifespan(wrapped_app) as app_state:
            async with bridge_lifespan(state):
                yield app_state

    app.router.lifespan_context = wrapped_lifespan  # type: ignore[assignment]


def _add_management_routes(app: FastAPI, state: BridgeState) -> None:
    @app.get(f"{MANAGEMENT_PREFIX}/status", response_model=StatusResponse)
    async def get_status() -> StatusResponse:
        """Get the state of the supervised dev server."""
        return state.status()

    @app.get(f"{MANAGEMENT_PREFIX}/logs", response_model=list[LogEntry])
    async def get_logs(
        limit: Annotated[int, Query(ge=1, le=5000, description="Number of entries")] = 200,
    ) -> list[LogEntry]:
        """Get the most recent buffered log entries."""
        buffer = get_log_buffer()
        if buffer is None:
            return []
        return list(buffer)[-limit:]


def create_app(
    config: DevServerConfig,
    *,
    profiles: Iterable[str] | None = None,
    app: FastAPI | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create (or extend) a FastAPI app with the dev bridge attached.

    When extending an existing app, call this after registering the app's own
    routes: the proxy catch-all route must come last.

    Args:
        config: Dev server configuration
        profiles: Active runtime profiles; read from the environment if None
        app: Existing application to attach to
        transport: Optional httpx transport for the proxy client

    Returns:
        FastAPI app instance
    """
    mode = ModeDetector(profiles) if profiles is not None else ModeDetector.from_env()
    state = BridgeState(config, mode, transport=transport)

    if app is None:
        app = FastAPI(title="vitebridge", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.vitebridge = state

    _install_lifespan(app, state)
    _add_management_routes(app, state)

    if state.serves_static:
        logger.info(f"Serving production build from {config.build_path}")
        app.mount(
            "/",
            StaticFiles(directory=config.build_path, html=True),
            name="vitebridge-static",
        )
    elif config.enabled:
        app.add_route("/{path:path}", state.router.handle, methods=PROXY_METHODS)
        app.add_websocket_route("/{path:path}", state.router.handle_websocket)

    return app


def run_dev_server(
    config: DevServerConfig,
    *,
    host: str = "127.0.0.1",
    port: int = 8080,
    profiles: Iterable[str] | None = None,
    log_level: int = logging.INFO,
    log_buffer: LogBuffer | None = None,
) -> None:
    """Serve the bridge with uvicorn until interrupted.

    Args:
        config: Dev server configuration
        host: Host the bridge listens on
        port: Port the bridge listens on
        profiles: Active runtime profiles; read from the environment if None
        log_level: Level for the bridge loggers
        log_buffer: Buffer backing the logs endpoint (a new one if None)
    """
    configure_dev_logging(level=log_level, buffer=log_buffer or new_log_buffer())

    app = create_app(config, profiles=profiles)
    uvicorn_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level=logging.getLevelName(log_level).lower(),
    )
    server = uvicorn.Server(uvicorn_config)
    asyncio.run(server.serve())
