"""SandboxManager — the collaborator-facing facade.

Wires the engine client, probe, registry, store, controller, executor, and
reaper from one :class:`~sandkit.config.SandkitSettings`.  Same wrapper
pattern throughout: the manager forwards to the component that owns the
operation.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from sandkit.config import SandkitSettings
from sandkit.engine.client import EngineClient
from sandkit.engine.ports import PortMappingResolver
from sandkit.engine.probe import EngineAvailabilityProbe
from sandkit.sandbox.controller import SandboxLifecycleController
from sandkit.sandbox.events import EventHooks
from sandkit.sandbox.executor import CommandExecutor
from sandkit.sandbox.reaper import OrphanReaper
from sandkit.sandbox.registry import SandboxRegistry
from sandkit.sandbox.store import InMemoryStore, JsonFileStore, SandboxStore
from sandkit.utils.telemetry import configure_telemetry

if TYPE_CHECKING:
    from sandkit.sandbox.executor import OutputCallback
    from sandkit.sandbox.models import (
        CommandResult,
        EnvironmentSetupResult,
        ManagerStatus,
        SandboxConfig,
        SandboxInstance,
        SandboxRole,
    )


class SandboxManager:
    """Create, recover, and destroy task sandboxes and run commands in them."""

    def __init__(
        self,
        settings: SandkitSettings | None = None,
        *,
        store: SandboxStore | None = None,
        client: EngineClient | None = None,
        probe: EngineAvailabilityProbe | None = None,
    ) -> None:
        self.settings = settings or SandkitSettings()
        self.client = client or EngineClient(self.settings.engine)
        self.probe = probe or EngineAvailabilityProbe(
            self.client,
            auto_install=self.settings.auto_install,
            auto_start=self.settings.auto_start,
            ready_timeout=self.settings.probe_ready_timeout,
            poll_interval=self.settings.probe_poll_interval,
        )
        self.store = store if store is not None else _default_store(self.settings)
        self.registry = SandboxRegistry()
        self.events = EventHooks()
        self.ports = PortMappingResolver(self.client)
        self.executor = CommandExecutor(
            self.registry,
            self.client,
            default_timeout=self.settings.exec_timeout,
        )
        self.controller = SandboxLifecycleController(
            settings=self.settings,
            registry=self.registry,
            store=self.store,
            client=self.client,
            probe=self.probe,
            ports=self.ports,
            executor=self.executor,
            events=self.events,
        )
        self.reaper = OrphanReaper(self.client, self.store, name_prefix=self.settings.name_prefix)

    @classmethod
    def from_settings(cls, settings: SandkitSettings) -> SandboxManager:
        """Build a manager and enable telemetry if the settings ask for it."""
        if settings.telemetry.enabled:
            configure_telemetry(otlp_endpoint=settings.telemetry.otlp_endpoint)
        return cls(settings)

    async def start(self) -> int:
        """Probe the engine and reconcile persisted sandboxes."""
        return await self.controller.load_from_persistence()

    async def create_sandbox(
        self,
        task_id: str,
        workspace_path: str | Path,
        *,
        image: str | None = None,
        language: str | None = None,
        config: SandboxConfig | None = None,
        repo_name: str | None = None,
        role: SandboxRole | None = None,
    ) -> SandboxInstance:
        return await self.controller.create_sandbox(
            task_id,
            workspace_path,
            image=image,
            language=language,
            config=config,
            repo_name=repo_name,
            role=role,
        )

    async def destroy_sandbox(self, task_id: str) -> bool:
        return await self.controller.destroy_sandbox(task_id)

    async def find_or_start_existing(self, task_id: str, workspace_path: str | Path) -> SandboxInstance | None:
        return await self.controller.find_or_start_existing(task_id, workspace_path)

    async def load_from_persistence(self) -> int:
        return await self.controller.load_from_persistence()

    async def refresh_status(self, task_id: str) -> SandboxInstance | None:
        return await self.controller.refresh_status(task_id)

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
        return await self.executor.exec(
            task_id,
            command,
            cwd=cwd,
            timeout=timeout,
            env=env,
            user=user,
            on_output=on_output,
        )

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
        return self.executor.exec_sync(task_id, command, cwd=cwd, timeout=timeout, env=env, user=user)

    async def setup_environment(
        self,
        task_id: str,
        *,
        install_command: str | None = None,
        env_vars: dict[str, str] | None = None,
        env_file: str | None = None,
        post_setup_commands: list[str] | None = None,
    ) -> EnvironmentSetupResult:
        return await self.controller.setup_environment(
            task_id,
            install_command=install_command,
            env_vars=env_vars,
            env_file=env_file,
            post_setup_commands=post_setup_commands,
        )

    async def sweep_orphans(self, *, dry_run: bool = False) -> list[str]:
        return await self.reaper.sweep(dry_run=dry_run)

    def get_status(self) -> ManagerStatus:
        return self.controller.get_status()

    def all_sandboxes(self) -> dict[str, SandboxInstance]:
        return self.controller.all_sandboxes()

    async def shutdown(self) -> int:
        """Destroy every registered sandbox."""
        return await self.controller.destroy_all()


def _default_store(settings: SandkitSettings) -> SandboxStore:
    if settings.state_file is not None:
        return JsonFileStore(settings.state_file)
    return InMemoryStore()
