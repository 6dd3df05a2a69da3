"""CLI command: proxyrun server — serve the session control API."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

from proxyrun.config import ProxyRunConfig
from proxyrun.session.modes import MODES

console = Console(stderr=True)


@click.command()
@click.option("--port", type=int, default=None, help="Control API port (default: 8471).")
@click.option(
    "--mode",
    "-m",
    type=click.Choice(sorted(MODES)),
    default=None,
    help="Delivery mode for sessions started over the API (default: from config).",
)
def server(port: int | None, mode: str | None) -> None:
    """Serve profile and session endpoints for local front-ends."""
    try:
        import uvicorn

        from proxyrun.web.app import create_app
    except ImportError as exc:
        console.print(
            f"[red]Control API unavailable ({exc.name} missing).[/red]\n"
            "Install the extra with: pip install 'proxyrun\\[web]'"
        )
        raise SystemExit(1) from exc

    config = ProxyRunConfig.load()
    if port is not None:
        config.web_port = port
    if mode is not None:
        config.service_mode = mode

    console.print(
        f"[bold]proxyrun[/bold] control API on "
        f"[cyan]http://{config.web_host}:{config.web_port}/api[/cyan] "
        f"({config.service_mode} mode)"
    )
    console.print("  [dim]Loopback only; sessions stop when the server exits.[/dim]\n")

    async def _serve() -> None:
        app = await create_app(config)
        await uvicorn.Server(
            uvicorn.Config(app, host=config.web_host, port=config.web_port, log_level="info")
        ).serve()

    asyncio.run(_serve())
