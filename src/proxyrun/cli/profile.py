"""CLI commands: proxyrun profile add|list|remove."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from proxyrun.acl import ROUTES
from proxyrun.cli.run import format_bytes
from proxyrun.config import ProxyRunConfig
from proxyrun.session.models import Profile
from proxyrun.storage.store import ProfileStore

console = Console(stderr=True)


@click.group()
def profile() -> None:
    """Manage stored connection profiles."""


@profile.command("add")
@click.argument("host")
@click.argument("port", type=int)
@click.option("--password", prompt=True, hide_input=True, help="Server password.")
@click.option("--method", default="aes-256-gcm", show_default=True, help="Cipher method.")
@click.option("--name", default="", help="Display name.")
@click.option("--plugin", default="", help="Plugin spec, e.g. 'obfs-local;obfs=http'.")
@click.option("--route", type=click.Choice(ROUTES), default="all", show_default=True)
@click.option("--udpdns", is_flag=True, help="Forward DNS over UDP relay.")
def add(
    host: str,
    port: int,
    password: str,
    method: str,
    name: str,
    plugin: str,
    route: str,
    udpdns: bool,
) -> None:
    """Store a new profile for HOST:PORT."""
    store = ProfileStore(ProxyRunConfig.load().db_path)
    try:
        created = store.create(
            Profile(
                host=host,
                remote_port=port,
                password=password,
                method=method,
                name=name,
                plugin=plugin,
                route=route,
                udpdns=udpdns,
            )
        )
    finally:
        store.close()
    console.print(f"Created profile [cyan]{created.id}[/cyan] ({created.formatted_name})")


@profile.command("list")
def list_profiles() -> None:
    """List stored profiles."""
    store = ProfileStore(ProxyRunConfig.load().db_path)
    try:
        profiles = store.list_all()
    finally:
        store.close()

    if not profiles:
        console.print("[dim]No profiles stored.[/dim]")
        return

    table = Table(box=None, padding=(0, 1))
    for column in ("ID", "Name", "Server", "Method", "Route", "Sent", "Received"):
        table.add_column(column)
    for p in profiles:
        table.add_row(
            str(p.id),
            p.formatted_name,
            f"{p.host}:{p.remote_port}",
            p.method,
            p.route,
            format_bytes(p.tx),
            format_bytes(p.rx),
        )
    console.print(table)


@profile.command("remove")
@click.argument("profile_id", type=int)
def remove(profile_id: int) -> None:
    """Delete the profile PROFILE_ID."""
    store = ProfileStore(ProxyRunConfig.load().db_path)
    try:
        removed = store.delete(profile_id)
    finally:
        store.close()
    if not removed:
        raise click.ClickException(f"Profile {profile_id} not found")
    console.print(f"Removed profile [cyan]{profile_id}[/cyan]")
