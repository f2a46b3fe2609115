"""``sandkit engine`` — probe the container engine."""

from __future__ import annotations

import asyncio
import sys

import click

from sandkit.cli_commands._common import build_manager
from sandkit.cli_commands._output import console


@click.command()
@click.option("--no-install", is_flag=True, help="Do not try to install a missing engine.")
@click.option("--no-start", is_flag=True, help="Do not try to start a stopped daemon.")
@click.pass_context
def engine(ctx: click.Context, no_install: bool, no_start: bool) -> None:
    """Check (and, unless told otherwise, install/start) the container engine."""
    overrides: dict[str, object] = {}
    if no_install:
        overrides["auto_install"] = False
    if no_start:
        overrides["auto_start"] = False
    manager = build_manager(ctx, **overrides)

    if asyncio.run(manager.probe.ensure_ready()):
        console.print(f"[green]Engine ready:[/green] {manager.probe.version or manager.client.binary}")
        return
    console.print("[red]Engine unavailable;[/red] commands will run on the host.")
    sys.exit(1)
