"""CommandExecutor — run commands inside a task's sandbox, or on the host.

Resolution uses the registry's running-only lookup.  No running sandbox is
not an error: the command runs on the host with ``executed_in="host"`` so
callers keep working without a container engine.

A command that exceeds its timeout has its whole process group terminated
and comes back with ``exit_code == 124`` and ``timed_out=True``.  Spawn
failures come back as ``exit_code == 127``.  Nothing here raises for a
failed, missing, or slow command.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Literal

from sandkit.sandbox.models import TIMEOUT_EXIT_CODE, TIMEOUT_MARKER, CommandResult
from sandkit.utils.telemetry import ATTR_EXECUTED_IN, ATTR_EXIT_CODE, ATTR_TASK_ID, get_tracer

if TYPE_CHECKING:
    from sandkit.engine.client import EngineClient
    from sandkit.sandbox.models import SandboxInstance
    from sandkit.sandbox.registry import SandboxRegistry

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

DEFAULT_EXEC_TIMEOUT = 300.0
SPAWN_FAILURE_EXIT_CODE = 127
_KILL_GRACE = 2.0
_STREAM_LIMIT = 16 * 1024 * 1024

OutputCallback = Callable[[str, str], None]
"""Receives ``(stream, line)`` where *stream* is ``"stdout"`` or ``"stderr"``."""

Location = Literal["sandbox", "host"]


class CommandExecutor:
    """Execute shell commands for a task with timeout and env injection."""

    def __init__(
        self,
        registry: SandboxRegistry,
        client: EngineClient,
        *,
        default_timeout: float = DEFAULT_EXEC_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._client = client
        self._default_timeout = default_timeout

    async def exec(
        self,
        task_id: str,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        user: str | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        """Run *command* for *task_id*, streaming lines to *on_output*."""
        with _tracer.start_as_current_span("sandbox.exec") as span:
            span.set_attribute(ATTR_TASK_ID, task_id)
            argv, run_cwd, run_env, location = self._plan(task_id, command, cwd, env, user)
            result = await _run_async(argv, run_cwd, run_env, self._timeout(timeout), location, on_output)
            span.set_attribute(ATTR_EXECUTED_IN, location)
            span.set_attribute(ATTR_EXIT_CODE, result.exit_code)
        return result

    def exec_sync(
        self,
        task_id: str,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        user: str | None = None,
    ) -> CommandResult:
        """Blocking variant of :meth:`exec` without incremental output."""
        with _tracer.start_as_current_span("sandbox.exec") as span:
            span.set_attribute(ATTR_TASK_ID, task_id)
            argv, run_cwd, run_env, location = self._plan(task_id, command, cwd, env, user)
            result = _run_sync(argv, run_cwd, run_env, self._timeout(timeout), location)
            span.set_attribute(ATTR_EXECUTED_IN, location)
            span.set_attribute(ATTR_EXIT_CODE, result.exit_code)
        return result

    async def exec_in_container(
        self,
        instance: SandboxInstance,
        command: str,
        *,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run *command* in *instance* directly, bypassing registry resolution."""
        argv = self._sandbox_argv(instance, command, None, env, None)
        return await _run_async(argv, None, None, self._timeout(timeout), "sandbox", None)

    def _timeout(self, timeout: float | None) -> float:
        return timeout if timeout is not None else self._default_timeout

    def _plan(
        self,
        task_id: str,
        command: str,
        cwd: str | None,
        env: Mapping[str, str] | None,
        user: str | None,
    ) -> tuple[list[str], str | None, dict[str, str] | None, Location]:
        found = self._registry.find_for_task(task_id, running_only=True)
        if found is None:
            logger.info("No running sandbox for task %s, executing on host", task_id)
            host_env = {**os.environ, **env} if env else None
            return ["sh", "-c", command], cwd, host_env, "host"

        sandbox_id, instance = found
        if sandbox_id != task_id:
            logger.debug("Task %s resolved to sandbox %s", task_id, sandbox_id)
        return self._sandbox_argv(instance, command, cwd, env, user), None, None, "sandbox"

    def _sandbox_argv(
        self,
        instance: SandboxInstance,
        command: str,
        cwd: str | None,
        env: Mapping[str, str] | None,
        user: str | None,
    ) -> list[str]:
        argv = [self._client.binary, "exec"]
        if user:
            argv.extend(["-u", user])
        argv.extend(["-w", instance.config.container_path(cwd)])
        for key, value in (env or {}).items():
            argv.extend(["-e", f"{key}={value}"])
        argv.extend([instance.container_name, "sh", "-c", command])
        return argv


async def _run_async(
    argv: list[str],
    cwd: str | None,
    env: dict[str, str] | None,
    timeout: float,
    location: Location,
    on_output: OutputCallback | None,
) -> CommandResult:
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
            limit=_STREAM_LIMIT,
            start_new_session=True,
        )
    except OSError as exc:
        return _spawn_failure(exc, start, location)

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []

    async def _pump(stream: asyncio.StreamReader | None, name: str, sink: list[bytes]) -> None:
        if stream is None:
            return
        while line := await stream.readline():
            sink.append(line)
            if on_output is not None:
                try:
                    on_output(name, line.decode(errors="replace"))
                except Exception:
                    logger.exception("Output callback failed")

    try:
        await asyncio.wait_for(
            asyncio.gather(
                _pump(proc.stdout, "stdout", stdout_chunks),
                _pump(proc.stderr, "stderr", stderr_chunks),
                proc.wait(),
            ),
            timeout=timeout,
        )
    except TimeoutError:
        await _terminate_async(proc)
        logger.warning("Command timed out after %ss (%s): %s", timeout, location, argv[-1])
        return CommandResult(
            exit_code=TIMEOUT_EXIT_CODE,
            stdout=b"".join(stdout_chunks).decode(errors="replace"),
            stderr=TIMEOUT_MARKER,
            duration=time.monotonic() - start,
            executed_in=location,
            timed_out=True,
        )

    return CommandResult(
        exit_code=_exit_code(proc.returncode),
        stdout=b"".join(stdout_chunks).decode(errors="replace"),
        stderr=b"".join(stderr_chunks).decode(errors="replace"),
        duration=time.monotonic() - start,
        executed_in=location,
    )


def _run_sync(
    argv: list[str],
    cwd: str | None,
    env: dict[str, str] | None,
    timeout: float,
    location: Location,
) -> CommandResult:
    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=env,
            start_new_session=True,
        )
    except OSError as exc:
        return _spawn_failure(exc, start, location)

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _signal_group(proc.pid, signal.SIGKILL)
        proc.kill()
        partial, _ = proc.communicate()
        logger.warning("Command timed out after %ss (%s): %s", timeout, location, argv[-1])
        return CommandResult(
            exit_code=TIMEOUT_EXIT_CODE,
            stdout=(partial or b"").decode(errors="replace"),
            stderr=TIMEOUT_MARKER,
            duration=time.monotonic() - start,
            executed_in=location,
            timed_out=True,
        )

    return CommandResult(
        exit_code=_exit_code(proc.returncode),
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
        duration=time.monotonic() - start,
        executed_in=location,
    )


async def _terminate_async(proc: asyncio.subprocess.Process) -> None:
    """SIGTERM the process group, then SIGKILL it if it lingers."""
    _signal_group(proc.pid, signal.SIGTERM)
    try:
        await asyncio.wait_for(proc.wait(), timeout=_KILL_GRACE)
    except TimeoutError:
        _signal_group(proc.pid, signal.SIGKILL)
        await proc.wait()


def _signal_group(pid: int, sig: signal.Signals) -> None:
    if sys.platform == "win32":
        try:
            os.kill(pid, signal.SIGTERM)
        except OSError:
            pass
        return
    try:
        os.killpg(pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


def _exit_code(returncode: int | None) -> int:
    if returncode is None:
        return 1
    if returncode < 0:
        return 128 - returncode
    return returncode


def _spawn_failure(exc: OSError, start: float, location: Location) -> CommandResult:
    logger.error("Failed to spawn command (%s): %s", location, exc)
    return CommandResult(
        exit_code=SPAWN_FAILURE_EXIT_CODE,
        stderr=str(exc),
        duration=time.monotonic() - start,
        executed_in=location,
    )
