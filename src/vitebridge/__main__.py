"""Command line entry point for vitebridge."""

import logging
import shlex
from pathlib import Path
from typing import Annotated

import httpx
from pydantic import ValidationError
from rich.markup import escape
from rich.table import Table
from typer import Exit, Option, Typer

from vitebridge import __version__
from vitebridge.config import load_config
from vitebridge.constants import MANAGEMENT_PREFIX
from vitebridge.models import StatusResponse
from vitebridge.utils import console

app = Typer(name="vitebridge", help="Serve a Vite dev server behind an ASGI bridge")


@app.command(name="run", help="Start the Vite dev server and serve the bridge in front of it")
def run(
    host: Annotated[str | None, Option(help="Vite dev server host")] = None,
    port: Annotated[int | None, Option(help="Vite dev server port")] = None,
    working_dir: Annotated[
        Path | None, Option("--working-dir", help="Frontend directory containing package.json")
    ] = None,
    command: Annotated[
        str | None, Option("--command", help="Dev server command line (default: npm run dev)")
    ] = None,
    timeout: Annotated[
        int | None, Option("--timeout", help="Seconds to wait for the dev server to be ready")
    ] = None,
    profile: Annotated[
        list[str] | None,
        Option("--profile", "-p", help="Active runtime profile (repeatable)"),
    ] = None,
    required: Annotated[
        bool | None,
        Option("--required/--optional", help="Abort startup if the dev server fails"),
    ] = None,
    http_probe: Annotated[
        bool | None,
        Option("--http-probe/--no-http-probe", help="Also probe the dev server over HTTP"),
    ] = None,
    listen_host: Annotated[str, Option(help="Host the bridge listens on")] = "127.0.0.1",
    listen_port: Annotated[int, Option(help="Port the bridge listens on")] = 8080,
    env_file: Annotated[Path, Option(help="Dotenv file to load")] = Path(".env"),
    verbose: Annotated[bool, Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Start the bridge; the dev server lives as long as the bridge does."""
    from vitebridge.dev.server import run_dev_server

    try:
        config = load_config(
            env_file,
            host=host,
            port=port,
            working_dir=working_dir,
            start_command=shlex.split(command) if command else None,
            startup_timeout_seconds=timeout,
            required=required,
            http_probe=http_probe,
        )
    except ValidationError as e:
        console.print(f"[red]❌ Invalid configuration:[/red]\n{escape(str(e))}")
        raise Exit(code=1)

    console.print(
        f"[cyan]🚀 vitebridge {__version__} on http://{listen_host}:{listen_port} "
        f"-> {config.dev_server_url}[/cyan]"
    )
    run_dev_server(
        config,
        host=listen_host,
        port=listen_port,
        profiles=profile,
        log_level=logging.DEBUG if verbose else logging.INFO,
    )


@app.command(name="status", help="Show the state of a running bridge")
def status(
    url: Annotated[str, Option(help="Base URL of the bridge")] = "http://127.0.0.1:8080",
):
    """Query the management endpoint of a running bridge."""
    try:
        response = httpx.get(f"{url.rstrip('/')}{MANAGEMENT_PREFIX}/status", timeout=5.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]❌ Could not reach bridge at {url}: {escape(str(e))}[/red]")
        raise Exit(code=1)

    info = StatusResponse.model_validate(response.json())
    table = Table(title="vitebridge status")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("State", info.state.value)
    table.add_row("Running", "✅" if info.running else "❌")
    table.add_row("PID", str(info.pid) if info.pid is not None else "-")
    table.add_row("Dev server", info.dev_server_url)
    table.add_row("Frontend dir", info.working_dir)
    table.add_row("Mode", "development" if info.development else "production")
    console.print(table)


if __name__ == "__main__":
    app()
