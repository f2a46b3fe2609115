"""Data models for the sandbox subsystem."""

from __future__ import annotations

import posixpath
import re
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TIMEOUT_EXIT_CODE = 124
TIMEOUT_MARKER = "Command timed out"

_PORT_SPEC = re.compile(r"^(?:(?:\d{1,3}\.){3}\d{1,3}:)?\d{1,5}:\d{1,5}(?:/(?:tcp|udp))?$")


class NetworkMode(str, Enum):
    """Network attachment of a sandbox container."""

    ISOLATED = "isolated"
    BRIDGED = "bridged"
    HOST = "host"

    @property
    def engine_value(self) -> str:
        """The value passed to ``docker run --network``."""
        return {"isolated": "none", "bridged": "bridge", "host": "host"}[self.value]


class SandboxStatus(str, Enum):
    """Lifecycle status of a sandbox instance."""

    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class SandboxRole(str, Enum):
    """Coarse routing tag used by callers (previews, dev servers)."""

    FRONTEND = "frontend"
    BACKEND = "backend"
    FULLSTACK = "fullstack"


class SandboxConfig(BaseModel):
    """Immutable configuration a sandbox container is created with."""

    model_config = ConfigDict(frozen=True)

    image: str = Field(..., min_length=1, description="Base image reference.")
    memory_limit: str = Field(default="4g", description="Memory limit (engine format, e.g. '4g').")
    cpu_limit: str = Field(default="2", description="CPU quota (number of cores).")
    network_mode: NetworkMode = Field(default=NetworkMode.HOST, description="Network attachment.")
    env: dict[str, str] = Field(default_factory=dict, description="Environment variables to inject.")
    ports: list[str] = Field(
        default_factory=list,
        description="Published ports as 'hostPort:containerPort'; host '0' picks a free port.",
    )
    mounts: dict[str, str] = Field(
        default_factory=dict,
        description="Host path -> container path volume mounts (one per repository).",
    )
    workdir: str = Field(default="/workspace", description="Working directory inside the container.")
    packages: list[str] = Field(default_factory=list, description="Extra packages installed after start.")

    @field_validator("ports")
    @classmethod
    def _validate_ports(cls, value: list[str]) -> list[str]:
        for spec in value:
            if not _PORT_SPEC.match(spec):
                msg = f"invalid port spec {spec!r} (expected 'hostPort:containerPort')"
                raise ValueError(msg)
        return value

    @field_validator("workdir")
    @classmethod
    def _validate_workdir(cls, value: str) -> str:
        if not value.startswith("/"):
            msg = f"workdir must be an absolute container path, got {value!r}"
            raise ValueError(msg)
        return value

    def container_path(self, cwd: str | None) -> str:
        """Resolve *cwd* inside the container; relative paths join under ``workdir``."""
        if not cwd:
            return self.workdir
        if cwd.startswith("/"):
            return cwd
        return posixpath.normpath(posixpath.join(self.workdir, cwd))


class SandboxInstance(BaseModel):
    """A sandbox bound to one task."""

    task_id: str
    container_id: str = ""
    container_name: str
    image: str
    workspace_path: str
    status: SandboxStatus = SandboxStatus.CREATING
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    config: SandboxConfig
    mapped_ports: dict[str, str] = Field(default_factory=dict)
    repo_name: str | None = None
    role: SandboxRole | None = None

    @property
    def is_running(self) -> bool:
        return self.status == SandboxStatus.RUNNING


class CommandResult(BaseModel):
    """Outcome of a command run inside a sandbox or on the host."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = Field(default=0.0, description="Wall-clock seconds.")
    executed_in: Literal["sandbox", "host"]
    timed_out: bool = Field(default=False, description="Whether the command was killed on timeout.")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class EnvironmentSetupResult(BaseModel):
    """Outcome of :meth:`SandboxLifecycleController.setup_environment`."""

    success: bool
    logs: list[str] = Field(default_factory=list)


class ManagerStatus(BaseModel):
    """Engine availability plus a summary of active sandboxes."""

    engine_available: bool
    engine_version: str | None = None
    platform: str
    active_sandboxes: int
    sandboxes: list[str] = Field(default_factory=list)
