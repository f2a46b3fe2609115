"""sandkit CLI entrypoint."""

from __future__ import annotations

import logging

import click
from rich.logging import RichHandler

from sandkit import __version__
from sandkit.cli_commands._common import CliState


@click.group()
@click.version_option(version=__version__, prog_name="sandkit")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Settings YAML file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """sandkit — manage per-task container sandboxes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False, rich_tracebacks=True)],
        force=True,
    )
    ctx.obj = CliState(config_path=config_path)


# Register subcommands
from sandkit.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
