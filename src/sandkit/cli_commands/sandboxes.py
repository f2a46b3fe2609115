"""Sandbox lifecycle commands: ``status``, ``list``, ``create``, ``exec``, ``destroy``, ``resume``."""

from __future__ import annotations

import asyncio
import sys

import click

from sandkit.cli_commands._common import build_manager
from sandkit.cli_commands._output import (
    console,
    print_result_footer,
    print_sandbox,
    print_sandboxes_table,
    print_status,
)
from sandkit.errors import EngineUnavailableError, SandboxCreateError
from sandkit.sandbox.models import CommandResult, NetworkMode, SandboxConfig, SandboxInstance


def _parse_pairs(values: tuple[str, ...], sep: str, what: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values:
        key, found, rest = value.partition(sep)
        if not found or not key:
            raise click.BadParameter(f"expected {what}, got {value!r}")
        pairs[key] = rest
    return pairs


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show engine availability and active sandbox count."""
    manager = build_manager(ctx)
    asyncio.run(manager.start())
    print_status(manager.get_status(), as_json=as_json)


@click.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool) -> None:
    """List sandboxes recovered from the state file."""
    manager = build_manager(ctx)
    asyncio.run(manager.start())
    sandboxes = manager.all_sandboxes()
    if not sandboxes and not as_json:
        console.print("[yellow]No sandboxes.[/yellow]")
        return
    print_sandboxes_table(sandboxes, as_json=as_json)


@click.command()
@click.argument("task_id")
@click.argument("workspace", type=click.Path(file_okay=False))
@click.option("--image", default=None, help="Image reference (overrides --language).")
@click.option("--language", default=None, help="Language hint used to pick an image.")
@click.option("--port", "ports", multiple=True, help="Published port 'host:container' (host 0 = dynamic).")
@click.option("--mount", "mounts", multiple=True, help="Volume mount 'host_path:container_path'.")
@click.option("--env", "env", multiple=True, help="Environment variable KEY=VALUE.")
@click.option(
    "--network",
    type=click.Choice([m.value for m in NetworkMode]),
    default=None,
    help="Network mode.",
)
@click.option("--workdir", default=None, help="Working directory inside the container.")
@click.pass_context
def create(
    ctx: click.Context,
    task_id: str,
    workspace: str,
    image: str | None,
    language: str | None,
    ports: tuple[str, ...],
    mounts: tuple[str, ...],
    env: tuple[str, ...],
    network: str | None,
    workdir: str | None,
) -> None:
    """Create (or reuse) the sandbox for TASK_ID with WORKSPACE mounted."""
    manager = build_manager(ctx)

    overrides: dict[str, object] = {
        "ports": list(ports),
        "mounts": _parse_pairs(mounts, ":", "host_path:container_path"),
        "env": _parse_pairs(env, "=", "KEY=VALUE"),
    }
    if network:
        overrides["network_mode"] = network
    if workdir:
        overrides["workdir"] = workdir
    resolved_image = image or manager.settings.image_for_language(language)

    try:
        config = SandboxConfig.model_validate({"image": resolved_image, **overrides})
    except ValueError as exc:
        console.print(f"[red]Invalid sandbox config:[/red] {exc}")
        sys.exit(2)

    async def _create() -> SandboxInstance:
        await manager.start()
        return await manager.create_sandbox(task_id, workspace, language=language, config=config)

    try:
        instance = asyncio.run(_create())
    except EngineUnavailableError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)
    except SandboxCreateError as exc:
        console.print(f"[red]Create failed:[/red] {exc.stderr or exc}")
        sys.exit(1)

    print_sandbox(instance)


@click.command("exec")
@click.argument("task_id")
@click.argument("command")
@click.option("--cwd", default=None, help="Working directory (relative paths join the sandbox workdir).")
@click.option("--timeout", type=float, default=None, help="Timeout in seconds.")
@click.option("--env", "env", multiple=True, help="Environment variable KEY=VALUE.")
@click.pass_context
def exec_cmd(
    ctx: click.Context,
    task_id: str,
    command: str,
    cwd: str | None,
    timeout: float | None,
    env: tuple[str, ...],
) -> None:
    """Run COMMAND for TASK_ID (in its sandbox, or on the host if it has none)."""
    manager = build_manager(ctx)
    env_vars = _parse_pairs(env, "=", "KEY=VALUE")

    def _echo(stream: str, line: str) -> None:
        click.echo(line, nl=False, err=stream == "stderr")

    async def _exec() -> CommandResult:
        await manager.start()
        return await manager.exec(task_id, command, cwd=cwd, timeout=timeout, env=env_vars, on_output=_echo)

    result = asyncio.run(_exec())
    if result.timed_out:
        click.echo(result.stderr, err=True)
    print_result_footer(result)
    sys.exit(result.exit_code)


@click.command()
@click.argument("task_id")
@click.pass_context
def destroy(ctx: click.Context, task_id: str) -> None:
    """Stop and remove the sandbox for TASK_ID."""
    manager = build_manager(ctx)

    async def _destroy() -> bool:
        await manager.start()
        return await manager.destroy_sandbox(task_id)

    if asyncio.run(_destroy()):
        console.print(f"[green]Destroyed sandbox for {task_id}.[/green]")
    else:
        console.print(f"[yellow]No sandbox found for {task_id}.[/yellow]")


@click.command()
@click.argument("task_id")
@click.argument("workspace", type=click.Path(file_okay=False))
@click.pass_context
def resume(ctx: click.Context, task_id: str, workspace: str) -> None:
    """Find and start the existing container for TASK_ID."""
    manager = build_manager(ctx)

    async def _resume() -> SandboxInstance | None:
        await manager.start()
        return await manager.find_or_start_existing(task_id, workspace)

    instance = asyncio.run(_resume())
    if instance is None:
        console.print(f"[yellow]No recoverable container for {task_id}.[/yellow]")
        sys.exit(1)
    print_sandbox(instance)
