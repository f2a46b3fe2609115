"""Sandbox subsystem — per-task containers, their registry, and command execution."""

from sandkit.sandbox.controller import SandboxLifecycleController
from sandkit.sandbox.events import EventHooks, EventKind, LifecycleEvent
from sandkit.sandbox.executor import CommandExecutor
from sandkit.sandbox.models import (
    CommandResult,
    EnvironmentSetupResult,
    ManagerStatus,
    NetworkMode,
    SandboxConfig,
    SandboxInstance,
    SandboxRole,
    SandboxStatus,
)
from sandkit.sandbox.naming import container_name
from sandkit.sandbox.reaper import OrphanReaper
from sandkit.sandbox.registry import SandboxRegistry
from sandkit.sandbox.store import InMemoryStore, JsonFileStore, SandboxStore

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "EnvironmentSetupResult",
    "EventHooks",
    "EventKind",
    "InMemoryStore",
    "JsonFileStore",
    "LifecycleEvent",
    "ManagerStatus",
    "NetworkMode",
    "OrphanReaper",
    "SandboxConfig",
    "SandboxInstance",
    "SandboxLifecycleController",
    "SandboxRegistry",
    "SandboxRole",
    "SandboxStatus",
    "SandboxStore",
    "container_name",
]
