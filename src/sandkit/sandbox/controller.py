"""SandboxLifecycleController — create, recover, and destroy task sandboxes.

Identity is the deterministic container name derived from the task id (see
:mod:`sandkit.sandbox.naming`).  Creation is guarded by a lock keyed on that
name, so concurrent callers for one task end up sharing a single container.
Engine failures are caught here and surfaced as :class:`EngineUnavailableError`,
:class:`SandboxCreateError`, ``None``, or ``False``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

from sandkit.errors import EngineError, EngineUnavailableError, SandboxCreateError
from sandkit.sandbox.events import EventHooks, EventKind, LifecycleEvent
from sandkit.sandbox.models import (
    EnvironmentSetupResult,
    ManagerStatus,
    SandboxConfig,
    SandboxInstance,
    SandboxRole,
    SandboxStatus,
)
from sandkit.sandbox.naming import container_name, detect_role, extract_repo_name
from sandkit.utils.telemetry import (
    ATTR_ADOPTED,
    ATTR_CONTAINER_NAME,
    ATTR_IMAGE,
    ATTR_RECORDS,
    ATTR_SANDBOX_ID,
    ATTR_STATUS,
    ATTR_TASK_ID,
    get_tracer,
)

if TYPE_CHECKING:
    from sandkit.config import SandkitSettings
    from sandkit.engine.client import EngineClient
    from sandkit.engine.ports import PortMappingResolver
    from sandkit.engine.probe import EngineAvailabilityProbe
    from sandkit.sandbox.executor import CommandExecutor
    from sandkit.sandbox.registry import SandboxRegistry
    from sandkit.sandbox.store import SandboxStore

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

# Engine states a stopped-but-not-removed container can be started from.
RESTARTABLE_STATES = frozenset({"exited", "stopped", "created"})

_INSTALL_TIMEOUT = 600.0
_PACKAGE_TIMEOUT = 300.0


class SandboxLifecycleController:
    """Owns sandbox creation, recovery, reconciliation, and teardown."""

    def __init__(
        self,
        *,
        settings: SandkitSettings,
        registry: SandboxRegistry,
        store: SandboxStore,
        client: EngineClient,
        probe: EngineAvailabilityProbe,
        ports: PortMappingResolver,
        executor: CommandExecutor,
        events: EventHooks | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._store = store
        self._client = client
        self._probe = probe
        self._ports = ports
        self._executor = executor
        self.events = events or EventHooks()
        self._create_locks: dict[str, asyncio.Lock] = {}

    def container_name_for(self, task_id: str) -> str:
        return container_name(task_id, self._settings.name_prefix)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

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
        """Return the running sandbox for *task_id*, creating it if needed.

        Raises:
            EngineUnavailableError: The engine probe failed.
            SandboxCreateError: The engine rejected creation.  The instance
                stays registered with status ``error`` for diagnosis.
        """
        if not await self._probe.ensure_ready():
            logger.warning("Engine unavailable, cannot create sandbox for task %s", task_id)
            raise EngineUnavailableError(task_id)

        found = self._registry.find_for_task(task_id, running_only=True)
        if found is not None:
            logger.info("Reusing sandbox %s for task %s", found[0], task_id)
            return found[1]

        name = self.container_name_for(task_id)
        lock = self._create_locks.setdefault(name, asyncio.Lock())
        async with lock:
            found = self._registry.find_for_task(task_id, running_only=True)
            if found is not None:
                return found[1]

            with _tracer.start_as_current_span("sandbox.create") as span:
                span.set_attribute(ATTR_TASK_ID, task_id)
                span.set_attribute(ATTR_CONTAINER_NAME, name)
                instance = await self._create(
                    task_id,
                    str(workspace_path),
                    name,
                    image=image,
                    language=language,
                    config=config,
                    repo_name=repo_name,
                    role=role,
                )
                span.set_attribute(ATTR_IMAGE, instance.image)
                span.set_attribute(ATTR_STATUS, instance.status.value)

        if instance.config.packages:
            await self._install_packages(instance)
        return instance

    async def _create(
        self,
        task_id: str,
        workspace_path: str,
        name: str,
        *,
        image: str | None,
        language: str | None,
        config: SandboxConfig | None,
        repo_name: str | None,
        role: SandboxRole | None,
    ) -> SandboxInstance:
        resolved_image = image or (config.image if config is not None else None)
        resolved_image = resolved_image or self._settings.image_for_language(language)
        cfg = self._settings.build_config(resolved_image, config)

        repo = repo_name or extract_repo_name(task_id)
        instance = SandboxInstance(
            task_id=task_id,
            container_name=name,
            image=cfg.image,
            workspace_path=workspace_path,
            config=cfg,
            repo_name=repo,
            role=role or detect_role(cfg.image, repo, language),
        )
        self._registry.put(task_id, instance)
        logger.info(
            "Creating sandbox for task %s (container=%s, image=%s, workspace=%s)",
            task_id,
            name,
            cfg.image,
            workspace_path,
        )

        try:
            Path(workspace_path).mkdir(parents=True, exist_ok=True)
            # A previous unclean shutdown may have left a container with this name.
            await self._client.remove(name)
            out = await self._client.run(
                ["run", *self._build_run_args(instance)],
                timeout=self._settings.create_timeout,
            )
        except (EngineError, OSError) as exc:
            stderr = (exc.stderr or exc.detail) if isinstance(exc, EngineError) else str(exc)
            self._fail_create(instance, stderr)

        lines = out.stdout.splitlines()
        instance.container_id = lines[-1].strip() if lines else ""
        if cfg.ports:
            instance.mapped_ports = await self._ports.resolve(instance.container_id or name)
            for container_port, host_port in instance.mapped_ports.items():
                logger.info("Container port %s -> host port %s", container_port, host_port)

        instance.status = SandboxStatus.RUNNING
        try:
            self._store.upsert(instance)
        except OSError as exc:
            logger.warning("Removing container %s, sandbox state could not be saved", name)
            await self._client.remove(name)
            self._fail_create(instance, str(exc))
        logger.info("Sandbox created for task %s: %s", task_id, instance.container_id[:12])
        self.events.emit(
            LifecycleEvent(
                EventKind.CREATED,
                task_id,
                name,
                {"container_id": instance.container_id, "image": cfg.image},
            )
        )
        return instance

    def _fail_create(self, instance: SandboxInstance, stderr: str) -> NoReturn:
        instance.status = SandboxStatus.ERROR
        try:
            self._store.upsert(instance)
        except OSError as exc:
            logger.warning("Could not persist failed sandbox for task %s: %s", instance.task_id, exc)
        logger.error("Failed to create sandbox for task %s: %s", instance.task_id, stderr)
        self.events.emit(
            LifecycleEvent(EventKind.ERROR, instance.task_id, instance.container_name, {"error": stderr})
        )
        raise SandboxCreateError(instance.task_id, stderr)

    def _build_run_args(self, instance: SandboxInstance) -> list[str]:
        """Build the detached, long-lived ``docker run`` arguments."""
        cfg = instance.config
        args: list[str] = [
            "-d",
            "--name", instance.container_name,
            "--hostname", f"sandbox-{_hostname_part(instance.task_id)}",
        ]

        # Files written to mounted workspaces stay owned by the host user.
        if self._settings.run_as_host_user and hasattr(os, "getuid"):
            args.extend(["--user", f"{os.getuid()}:{os.getgid()}"])

        if cfg.memory_limit:
            args.extend(["--memory", cfg.memory_limit])
        if cfg.cpu_limit:
            args.extend(["--cpus", cfg.cpu_limit])
        args.extend(["--network", cfg.network_mode.engine_value])

        if cfg.mounts:
            for host_path, container_path in cfg.mounts.items():
                args.extend(["-v", f"{host_path}:{container_path}"])
        else:
            args.extend(["-v", f"{instance.workspace_path}:{cfg.workdir}"])

        for key, value in cfg.env.items():
            args.extend(["-e", f"{key}={value}"])

        for port in cfg.ports:
            args.extend(["-p", port])

        args.extend(["-w", cfg.workdir])
        args.append(cfg.image)
        args.extend(["tail", "-f", "/dev/null"])
        return args

    async def _install_packages(self, instance: SandboxInstance) -> None:
        packages = " ".join(shlex.quote(p) for p in instance.config.packages)
        if "python" in instance.image:
            command = f"pip install {packages}"
        else:
            command = f"apt-get update && apt-get install -y {packages}"
        logger.info("Installing packages in %s: %s", instance.container_name, packages)
        result = await self._executor.exec_in_container(
            instance,
            command,
            timeout=_PACKAGE_TIMEOUT,
        )
        if not result.ok:
            logger.warning(
                "Package install in %s exited %d: %s",
                instance.container_name,
                result.exit_code,
                result.stderr.strip(),
            )

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    async def destroy_sandbox(self, task_id: str) -> bool:
        """Stop and remove the sandbox serving *task_id*.

        Returns ``False`` (with no side effects) when there is none.
        """
        found = self._registry.find_for_task(task_id)
        if found is None:
            logger.info("No sandbox found for task %s", task_id)
            return False

        sandbox_id, instance = found
        with _tracer.start_as_current_span("sandbox.destroy") as span:
            span.set_attribute(ATTR_TASK_ID, task_id)
            span.set_attribute(ATTR_SANDBOX_ID, sandbox_id)
            span.set_attribute(ATTR_CONTAINER_NAME, instance.container_name)

            logger.info("Destroying sandbox %s for task %s", sandbox_id, task_id)
            await self._client.stop(instance.container_name, self._settings.stop_grace_period)
            await self._client.remove(instance.container_name)

            instance.status = SandboxStatus.STOPPED
            instance.mapped_ports = {}
            self._registry.remove(sandbox_id)
            try:
                self._store.delete_by_task_id(sandbox_id)
            except OSError as exc:
                logger.warning("Could not delete sandbox record for task %s: %s", sandbox_id, exc)

            lock = self._create_locks.get(instance.container_name)
            if lock is not None and not lock.locked():
                del self._create_locks[instance.container_name]

        self.events.emit(
            LifecycleEvent(EventKind.DESTROYED, task_id, instance.container_name, {"sandbox_id": sandbox_id})
        )
        return True

    async def destroy_all(self) -> int:
        """Destroy every registered sandbox (shutdown path)."""
        ids = self._registry.all_ids()
        logger.info("Destroying %d sandboxes", len(ids))
        results = await asyncio.gather(*(self.destroy_sandbox(sandbox_id) for sandbox_id in ids))
        return sum(1 for destroyed in results if destroyed)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def find_or_start_existing(self, task_id: str, workspace_path: str | Path) -> SandboxInstance | None:
        """Adopt the container left behind for *task_id* by a previous run.

        Returns ``None`` when there is no usable container; the caller then
        creates a fresh one.
        """
        if not await self._probe.ensure_ready():
            logger.warning("Engine unavailable, cannot recover sandbox for task %s", task_id)
            return None

        existing = self._registry.get(task_id)
        if existing is not None and existing.is_running:
            return existing

        name = self.container_name_for(task_id)
        try:
            state = await self._client.inspect_status(name)
            if state is None:
                logger.info("No existing container %s for task %s", name, task_id)
                self._store.delete_by_task_id(task_id)
                return None

            logger.info("Found container %s for task %s in state %s", name, task_id, state)
            if state in RESTARTABLE_STATES:
                await self._client.start(name)
            elif state != "running":
                logger.warning("Container %s in unrecoverable state %s, removing", name, state)
                await self._client.remove(name)
                return None

            instance = await self._adopt(task_id, name, str(workspace_path))
        except (EngineError, OSError) as exc:
            logger.warning("Could not recover container %s for task %s: %s", name, task_id, exc)
            return None

        self.events.emit(LifecycleEvent(EventKind.RECOVERED, task_id, name, {"previous_state": state}))
        return instance

    async def _adopt(self, task_id: str, name: str, workspace_path: str) -> SandboxInstance:
        container_id = await self._client.inspect_field(name, "{{.Id}}")
        image = await self._client.inspect_field(name, "{{.Config.Image}}")

        stored = self._store.find_by_task_id(task_id)
        if stored is not None:
            instance = stored.model_copy(
                update={"container_id": container_id, "image": image, "workspace_path": workspace_path},
            )
        else:
            instance = SandboxInstance(
                task_id=task_id,
                container_id=container_id,
                container_name=name,
                image=image,
                workspace_path=workspace_path,
                config=self._settings.build_config(image),
                repo_name=extract_repo_name(task_id),
                role=SandboxRole.FULLSTACK,
            )

        instance.mapped_ports = await self._ports.resolve(container_id or name)
        instance.status = SandboxStatus.RUNNING
        self._registry.put(task_id, instance)
        self._store.upsert(instance)
        logger.info("Recovered sandbox %s for task %s", name, task_id)
        return instance

    async def load_from_persistence(self) -> int:
        """Reconcile persisted records against the engine at startup.

        Returns the number of sandboxes adopted into the registry.  A failure
        on one record is logged and does not stop the others.
        """
        if not await self._probe.ensure_ready():
            logger.warning("Engine unavailable, skipping sandbox reconciliation")
            return 0

        with _tracer.start_as_current_span("sandbox.reconcile") as span:
            try:
                records = self._store.find_all()
            except OSError as exc:
                logger.warning("Could not read persisted sandboxes: %s", exc)
                return 0
            span.set_attribute(ATTR_RECORDS, len(records))
            logger.info("Reconciling %d persisted sandboxes", len(records))

            adopted = 0
            for record in records:
                try:
                    if await self._reconcile(record):
                        adopted += 1
                except (EngineError, OSError) as exc:
                    logger.warning("Could not reconcile sandbox for task %s: %s", record.task_id, exc)

            span.set_attribute(ATTR_ADOPTED, adopted)
        logger.info("Reconciliation adopted %d of %d sandboxes", adopted, len(records))
        return adopted

    async def _reconcile(self, record: SandboxInstance) -> bool:
        state = await self._client.inspect_status(record.container_name)
        if state is None:
            logger.info("Container %s was removed out-of-band, dropping record", record.container_name)
            self._store.delete_by_task_id(record.task_id)
            return False

        if state in RESTARTABLE_STATES:
            logger.info("Restarting %s container %s", state, record.container_name)
            await self._client.start(record.container_name)
        elif state != "running":
            logger.warning("Container %s in unexpected state %s", record.container_name, state)
            self._store.update_status(record.task_id, SandboxStatus.ERROR)
            return False

        # Dynamically published ports get new host ports on every start.
        record.mapped_ports = await self._ports.resolve(record.container_id or record.container_name)
        record.status = SandboxStatus.RUNNING
        self._registry.put(record.task_id, record)
        self._store.upsert(record)

        self.events.emit(
            LifecycleEvent(EventKind.RECOVERED, record.task_id, record.container_name, {"previous_state": state})
        )
        return True

    async def refresh_status(self, task_id: str) -> SandboxInstance | None:
        """Re-observe the engine state of a registered sandbox.

        A ``running`` sandbox whose container is no longer running moves to
        ``error``.
        """
        found = self._registry.find_for_task(task_id)
        if found is None:
            return None
        sandbox_id, instance = found
        if not instance.is_running:
            return instance

        try:
            state = await self._client.inspect_status(instance.container_name)
        except EngineError as exc:
            logger.warning("Could not inspect %s: %s", instance.container_name, exc)
            return instance

        if state != "running":
            logger.warning("Container %s for task %s is %s", instance.container_name, task_id, state or "gone")
            instance.status = SandboxStatus.ERROR
            instance.mapped_ports = {}
            try:
                self._store.update_status(sandbox_id, SandboxStatus.ERROR)
            except OSError as exc:
                logger.warning("Could not persist status for task %s: %s", sandbox_id, exc)
            self.events.emit(
                LifecycleEvent(
                    EventKind.ERROR,
                    task_id,
                    instance.container_name,
                    {"engine_state": state or "missing"},
                )
            )
        return instance

    # ------------------------------------------------------------------
    # Environment setup
    # ------------------------------------------------------------------

    async def setup_environment(
        self,
        task_id: str,
        *,
        install_command: str | None = None,
        env_vars: dict[str, str] | None = None,
        env_file: str | None = None,
        post_setup_commands: list[str] | None = None,
    ) -> EnvironmentSetupResult:
        """Write a ``.env`` file, install dependencies, and run setup commands."""
        logs: list[str] = []
        found = self._registry.find_for_task(task_id)
        if found is None:
            logs.append("[ERROR] No sandbox found for task")
            return EnvironmentSetupResult(success=False, logs=logs)

        _, instance = found
        logs.append(f"[INFO] Setting up environment in sandbox {instance.container_name}")

        if env_vars:
            content = "".join(f"{key}={value}\n" for key, value in env_vars.items())
            path = env_file or f"{instance.config.workdir}/.env"
            result = await self._executor.exec(
                task_id,
                f"printf %s {shlex.quote(content)} > {shlex.quote(path)}",
            )
            if result.ok:
                logs.append(f"[OK] Created .env file with {len(env_vars)} variables")
            else:
                logs.append(f"[WARN] Failed to create .env file: {result.stderr.strip()}")

        if install_command:
            logs.append(f"[INFO] Running: {install_command}")
            result = await self._executor.exec(task_id, install_command, timeout=_INSTALL_TIMEOUT)
            if not result.ok:
                logs.append(f"[ERROR] Install failed: {result.stderr.strip()}")
                return EnvironmentSetupResult(success=False, logs=logs)
            logs.append("[OK] Dependencies installed successfully")

        for command in post_setup_commands or []:
            logs.append(f"[INFO] Running: {command}")
            result = await self._executor.exec(task_id, command)
            if result.ok:
                logs.append("[OK] Command succeeded")
            else:
                logs.append(f"[WARN] Command failed: {result.stderr.strip()}")

        logs.append("[DONE] Environment setup complete")
        return EnvironmentSetupResult(success=True, logs=logs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_sandbox(self, task_id: str) -> SandboxInstance | None:
        """Direct (exact id) registry lookup."""
        return self._registry.get(task_id)

    def all_sandboxes(self) -> dict[str, SandboxInstance]:
        return dict(self._registry.all())

    def get_status(self) -> ManagerStatus:
        return ManagerStatus(
            engine_available=self._probe.available,
            engine_version=self._probe.version,
            platform=sys.platform,
            active_sandboxes=len(self._registry),
            sandboxes=self._registry.all_ids(),
        )


def _hostname_part(task_id: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "-" for ch in task_id[:8]).strip("-").lower()
    return cleaned or "task"
