"""CLI subcommand registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all subcommands on the CLI group."""
    from sandkit.cli_commands.engine import engine
    from sandkit.cli_commands.maintenance import reconcile, sweep
    from sandkit.cli_commands.sandboxes import create, destroy, exec_cmd, list_cmd, resume, status

    cli.add_command(engine)
    cli.add_command(status)
    cli.add_command(list_cmd)
    cli.add_command(create)
    cli.add_command(exec_cmd)
    cli.add_command(destroy)
    cli.add_command(resume)
    cli.add_command(reconcile)
    cli.add_command(sweep)
