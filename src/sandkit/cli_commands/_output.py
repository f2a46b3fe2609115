"""Shared CLI output formatters."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from sandkit.sandbox.models import CommandResult, ManagerStatus, SandboxInstance

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLES = {
    "running": "green",
    "creating": "yellow",
    "stopped": "dim",
    "error": "red",
}


def print_status(status: ManagerStatus, *, as_json: bool = False) -> None:
    """Pretty-print engine availability and the active sandbox count."""
    if as_json:
        console.print_json(status.model_dump_json())
        return

    engine = "[green]available[/green]" if status.engine_available else "[red]unavailable[/red]"
    console.print("\n[bold]Sandbox Manager[/bold]")
    console.print(f"  Engine: {engine}")
    console.print(f"  Version: {status.engine_version or '-'}")
    console.print(f"  Platform: {status.platform}")
    console.print(f"  Active sandboxes: {status.active_sandboxes}")


def print_sandboxes_table(sandboxes: dict[str, SandboxInstance], *, as_json: bool = False) -> None:
    """Pretty-print registered sandboxes as a table."""
    if as_json:
        data = {sandbox_id: inst.model_dump(mode="json") for sandbox_id, inst in sandboxes.items()}
        console.print_json(json.dumps(data))
        return

    table = Table(title="Sandboxes")
    table.add_column("Task", style="cyan")
    table.add_column("Container")
    table.add_column("Status")
    table.add_column("Image")
    table.add_column("Role")
    table.add_column("Ports")

    for sandbox_id, inst in sandboxes.items():
        style = _STATUS_STYLES.get(inst.status.value, "")
        ports = ", ".join(f"{c}->{h}" for c, h in inst.mapped_ports.items()) or "-"
        table.add_row(
            sandbox_id,
            inst.container_name,
            f"[{style}]{inst.status.value}[/{style}]" if style else inst.status.value,
            _truncate(inst.image, 40),
            inst.role.value if inst.role else "-",
            ports,
        )

    console.print(table)


def print_sandbox(inst: SandboxInstance) -> None:
    """Print the key facts about one sandbox."""
    console.print(f"[bold]{inst.task_id}[/bold] ({inst.status.value})")
    console.print(f"  Container: {inst.container_name} {inst.container_id[:12]}")
    console.print(f"  Image: {inst.image}")
    console.print(f"  Workspace: {inst.workspace_path} -> {inst.config.workdir}")
    for container_port, host_port in inst.mapped_ports.items():
        console.print(f"  Port {container_port} -> http://localhost:{host_port}")


def print_result_footer(result: CommandResult) -> None:
    style = "green" if result.ok else "red"
    suffix = " (timed out)" if result.timed_out else ""
    err_console.print(
        f"[{style}]exit {result.exit_code}[/{style}]{suffix} "
        f"in {result.duration:.2f}s on {result.executed_in}",
        highlight=False,
    )


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
