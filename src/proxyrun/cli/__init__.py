"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from proxyrun import __version__


@click.group()
@click.version_option(version=__version__, prog_name="proxyrun")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """proxyrun — supervised local proxy sessions."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from proxyrun.cli.profile import profile  # noqa: F811
    from proxyrun.cli.run import run  # noqa: F811
    from proxyrun.cli.server import server  # noqa: F811

    main.add_command(run)
    main.add_command(profile)
    main.add_command(server)


_register_commands()
