"""Operator maintenance commands: ``reconcile`` and ``sweep``."""

from __future__ import annotations

import asyncio

import click

from sandkit.cli_commands._common import build_manager
from sandkit.cli_commands._output import console


@click.command()
@click.pass_context
def reconcile(ctx: click.Context) -> None:
    """Reconcile the state file against the engine."""
    manager = build_manager(ctx)
    adopted = asyncio.run(manager.load_from_persistence())
    console.print(f"Adopted {adopted} sandbox(es).")


@click.command()
@click.option("--dry-run", is_flag=True, help="Only list orphaned containers.")
@click.pass_context
def sweep(ctx: click.Context, dry_run: bool) -> None:
    """Remove sandbox containers that have no record in the state file."""
    manager = build_manager(ctx)
    orphans = asyncio.run(manager.sweep_orphans(dry_run=dry_run))
    if not orphans:
        console.print("[green]No orphaned containers.[/green]")
        return
    verb = "Would remove" if dry_run else "Removed"
    for name in orphans:
        console.print(f"{verb} {name}")
