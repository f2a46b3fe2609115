"""Shared helpers: an in-process fake engine and a stub engine executable."""

from __future__ import annotations

import asyncio
import os
import stat
from pathlib import Path
from typing import Any

from sandkit.config import SandkitSettings
from sandkit.engine.client import EngineClient, EngineOutput
from sandkit.errors import EngineError
from sandkit.sandbox.models import SandboxConfig, SandboxInstance, SandboxStatus
from sandkit.sandbox.naming import container_name


# Emulates ``docker exec [-u U] -w DIR [-e K=V]... NAME cmd...`` by running
# the command on the host, so the executor's sandbox path can run for real.
_STUB_ENGINE = """#!/bin/sh
[ "$1" = exec ] || { echo "unsupported: $1" >&2; exit 2; }
shift
while [ $# -gt 0 ]; do
  case "$1" in
    -w|-u) shift 2 ;;
    -e) export "$2"; shift 2 ;;
    *) break ;;
  esac
done
shift
exec "$@"
"""


def write_stub_engine(directory: Path) -> str:
    """Write the stub engine script into *directory* and return its path."""
    path = directory / "fake-docker"
    path.write_text(_STUB_ENGINE)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


class FakeEngine(EngineClient):
    """In-memory engine: tracks containers by name and records every call."""

    def __init__(self, binary: str = "docker") -> None:
        super().__init__(binary)
        self.containers: dict[str, dict[str, str]] = {}
        self.calls: list[list[str]] = []
        self.port_output = ""
        self.create_error: str | None = None
        self.start_error: str | None = None

    def add_container(self, name: str, state: str = "running", image: str = "node:20-bookworm") -> None:
        self.containers[name] = {"state": state, "id": f"{name}-id".ljust(64, "0"), "image": image}

    def commands(self, verb: str) -> list[list[str]]:
        return [c for c in self.calls if c and c[0] == verb]

    async def run(
        self,
        args: list[str],
        *,
        timeout: float | None = None,
        ignore_errors: bool = False,
    ) -> EngineOutput:
        self.calls.append(list(args))
        await asyncio.sleep(0)
        try:
            return EngineOutput(stdout=self._handle(args))
        except EngineError as exc:
            if ignore_errors:
                return EngineOutput(stderr=exc.stderr, returncode=exc.returncode or 1)
            raise

    def _missing(self, name: str) -> EngineError:
        msg = f"Error: No such object: {name}"
        return EngineError(msg, returncode=1, stderr=msg)

    def _handle(self, args: list[str]) -> str:
        verb = args[0]
        if verb in ("info", "--version"):
            return "Docker version 27.0.0"
        if verb == "rm":
            self.containers.pop(args[-1], None)
            return ""
        if verb == "run":
            if self.create_error is not None:
                raise EngineError(self.create_error, returncode=125, stderr=self.create_error)
            name = args[args.index("--name") + 1]
            image = args[args.index("tail") - 1]
            self.add_container(name, "running", image)
            return self.containers[name]["id"]
        if verb == "inspect":
            template, name = args[2], args[3]
            container = self.containers.get(name)
            if container is None:
                raise self._missing(name)
            if template == "{{.State.Status}}":
                return container["state"]
            if template == "{{.Id}}":
                return container["id"]
            return container["image"]
        if verb == "start":
            if self.start_error is not None:
                raise EngineError(self.start_error, returncode=1, stderr=self.start_error)
            name = args[1]
            if name not in self.containers:
                raise self._missing(name)
            self.containers[name]["state"] = "running"
            return name
        if verb == "stop":
            name = args[-1]
            if name not in self.containers:
                raise self._missing(name)
            self.containers[name]["state"] = "exited"
            return name
        if verb == "port":
            return self.port_output
        if verb == "ps":
            pattern = args[args.index("--filter") + 1].removeprefix("name=")
            return "\n".join(n for n in self.containers if pattern in n)
        raise EngineError(f"unsupported verb {verb}", returncode=1)


class StubProbe:
    """Stands in for :class:`EngineAvailabilityProbe` with a fixed answer."""

    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.version: str | None = "Docker version 27.0.0" if ready else None
        self.calls = 0

    @property
    def available(self) -> bool:
        return self.ready

    async def ensure_ready(self) -> bool:
        self.calls += 1
        return self.ready


def make_settings(**overrides: Any) -> SandkitSettings:
    """Settings that never touch the host user or real timeouts."""
    base: dict[str, Any] = {"run_as_host_user": False, "probe_poll_interval": 0.01, "probe_ready_timeout": 0.05}
    base.update(overrides)
    return SandkitSettings(**base)


def make_instance(
    task_id: str,
    *,
    status: SandboxStatus = SandboxStatus.RUNNING,
    image: str = "node:20-bookworm",
    workdir: str = "/workspace",
    **kwargs: Any,
) -> SandboxInstance:
    return SandboxInstance(
        task_id=task_id,
        container_name=container_name(task_id),
        image=image,
        workspace_path=kwargs.pop("workspace_path", f"/ws/{task_id}"),
        status=status,
        config=SandboxConfig(image=image, workdir=workdir),
        **kwargs,
    )


def pid_alive(pid: int) -> bool:
    """``True`` while *pid* exists and is not a zombie."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    try:
        state = Path(f"/proc/{pid}/stat").read_text().rsplit(")", 1)[1].split()[0]
    except (OSError, IndexError):
        return True
    return state != "Z"
