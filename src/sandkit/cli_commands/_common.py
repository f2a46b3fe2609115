"""Shared CLI state: settings loading and manager construction."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

import click

from sandkit.cli_commands._output import console
from sandkit.config import SandkitSettings, SettingsLoader
from sandkit.errors import SettingsError
from sandkit.manager import SandboxManager

# The CLI runs one process per command, so state must live on disk.
DEFAULT_STATE_FILE = Path("~/.sandkit/sandboxes.json")


@dataclass
class CliState:
    config_path: str | None = None


def load_settings(state: CliState) -> SandkitSettings:
    if state.config_path is None:
        settings = SandkitSettings()
    else:
        try:
            settings = SettingsLoader(Path(state.config_path)).load()
        except SettingsError as exc:
            console.print(f"[red]Settings error:[/red] {exc}")
            sys.exit(1)
    if settings.state_file is None:
        settings = settings.model_copy(update={"state_file": DEFAULT_STATE_FILE})
    return settings


def build_manager(ctx: click.Context, **overrides: object) -> SandboxManager:
    """Create a :class:`SandboxManager` from the settings selected on the command line."""
    state = ctx.find_object(CliState) or CliState()
    settings = load_settings(state)
    if overrides:
        settings = settings.model_copy(update=overrides)
    return SandboxManager.from_settings(settings)
