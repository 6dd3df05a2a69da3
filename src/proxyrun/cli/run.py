"""CLI command: proxyrun run — start a proxy session in the foreground."""

from __future__ import annotations

import sys
import threading

import click
from rich.console import Console
from rich.table import Table

from proxyrun.config import ProxyRunConfig
from proxyrun.session.controller import SessionController
from proxyrun.session.models import SessionState, TrafficStats
from proxyrun.session.modes import MODES, create_mode
from proxyrun.storage.store import ProfileStore

console = Console(stderr=True)

_STATE_COLORS = {
    SessionState.CONNECTING: "yellow",
    SessionState.CONNECTED: "green",
    SessionState.STOPPING: "yellow",
    SessionState.STOPPED: "red",
}


def format_bytes(count: float) -> str:
    """Human-readable byte count (1024-based)."""
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(count) < 1024:
            return f"{count:.0f} {unit}" if unit == "B" else f"{count:.1f} {unit}"
        count /= 1024
    return f"{count:.1f} TiB"


class ConsoleObserver:
    """Prints session events to the terminal."""

    def __init__(self, out: Console = console) -> None:
        self._console = out
        self.last_state: SessionState | None = None
        self.last_message: str | None = None

    def state_changed(
        self, state: SessionState, profile_name: str, message: str | None
    ) -> None:
        self.last_state = state
        self.last_message = message
        color = _STATE_COLORS.get(state, "white")
        suffix = f" — {message}" if message else ""
        self._console.print(
            f"  [{color}]{state.value}[/{color}] [cyan]{profile_name}[/cyan]{suffix}"
        )

    def traffic_updated(self, profile_id: int, stats: TrafficStats) -> None:
        self._console.print(
            f"  [dim]↑ {format_bytes(stats.tx_rate)}/s "
            f"↓ {format_bytes(stats.rx_rate)}/s "
            f"(total ↑ {format_bytes(stats.tx_total)} ↓ {format_bytes(stats.rx_total)})[/dim]"
        )

    def traffic_persisted(self, profile_id: int) -> None:
        pass


@click.command()
@click.option("--profile", "-p", "profile_id", type=int, default=None, help="Profile ID to connect with.")
@click.option(
    "--mode",
    "-m",
    type=click.Choice(sorted(MODES)),
    default=None,
    help="Delivery mode (default: from config).",
)
@click.option("--bandwidth/--no-bandwidth", default=True, help="Print bandwidth every second.")
def run(profile_id: int | None, mode: str | None, bandwidth: bool) -> None:
    """Connect with a stored profile and keep the proxy running until interrupted."""
    config = ProxyRunConfig.load()
    if profile_id is not None:
        config.profile_id = profile_id
    if config.profile_id is None:
        raise click.UsageError("No profile selected — pass --profile or set PROXYRUN_PROFILE.")

    store = ProfileStore(config.db_path)
    shutdown = threading.Event()
    controller = SessionController(
        create_mode(mode or config.service_mode),
        store,
        config=config,
        on_shutdown=shutdown.set,
    )
    observer = ConsoleObserver()
    controller.register_observer(observer)
    if bandwidth:
        controller.start_listening_for_bandwidth(observer)

    console.print(
        f"[bold]proxyrun[/bold] {controller.mode.tag} mode, profile "
        f"[cyan]{config.profile_id}[/cyan], listening on "
        f"[cyan]{config.listen_address}:{config.proxy_port}[/cyan]"
    )
    console.print("  Press Ctrl+C to stop.\n")

    try:
        controller.start()
        shutdown.wait()
        controller.wait_for_attempt()
        controller.registry.drain()
    finally:
        controller.close()
        store.close()

    _print_summary(config, observer)
    if observer.last_message:
        sys.exit(1)


def _print_summary(config: ProxyRunConfig, observer: ConsoleObserver) -> None:
    console.print("\n[bold]Session Summary[/bold]")
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()
    table.add_row("Profile", str(config.profile_id))
    table.add_row("Final state", observer.last_state.value if observer.last_state else "N/A")
    table.add_row("Message", observer.last_message or "—")
    console.print(table)
