"""SandboxRegistry — the in-memory map of active sandboxes.

Identity lookups are exact or prefix-with-delimiter only.  ``t1`` never
matches ``t10``; it does match ``t1-setup-api`` (an auxiliary sandbox the
task spawned).
"""

from __future__ import annotations

import threading
from collections.abc import Iterator

from sandkit.sandbox.models import SandboxInstance, SandboxRole

ID_DELIMITER = "-"


def is_related_id(sandbox_id: str, task_id: str) -> bool:
    """``True`` if *sandbox_id* is *task_id* or ``task_id + '-' + suffix``."""
    return sandbox_id == task_id or sandbox_id.startswith(task_id + ID_DELIMITER)


class SandboxRegistry:
    """Authoritative map of sandbox id -> :class:`SandboxInstance`.

    All reads and writes go through one re-entrant lock, so the registry can
    be shared by async callers and by threads running the sync executor.
    """

    def __init__(self) -> None:
        self._sandboxes: dict[str, SandboxInstance] = {}
        self._lock = threading.RLock()

    def get(self, sandbox_id: str) -> SandboxInstance | None:
        with self._lock:
            return self._sandboxes.get(sandbox_id)

    def put(self, sandbox_id: str, instance: SandboxInstance) -> None:
        with self._lock:
            self._sandboxes[sandbox_id] = instance

    def remove(self, sandbox_id: str) -> SandboxInstance | None:
        with self._lock:
            return self._sandboxes.pop(sandbox_id, None)

    def all(self) -> list[tuple[str, SandboxInstance]]:
        """Snapshot of every ``(sandbox_id, instance)`` pair."""
        with self._lock:
            return list(self._sandboxes.items())

    def find_for_task(
        self,
        task_id: str,
        *,
        running_only: bool = False,
    ) -> tuple[str, SandboxInstance] | None:
        """Resolve the sandbox serving *task_id*.

        1. Exact id, running.
        2. ``task_id-<suffix>``, running.
        3. Unless *running_only*: exact id, then ``task_id-<suffix>``, any status.
        """
        with self._lock:
            exact = self._sandboxes.get(task_id)
            if exact is not None and exact.is_running:
                return task_id, exact

            prefix = task_id + ID_DELIMITER
            for sandbox_id, instance in self._sandboxes.items():
                if sandbox_id.startswith(prefix) and instance.is_running:
                    return sandbox_id, instance

            if running_only:
                return None

            if exact is not None:
                return task_id, exact
            for sandbox_id, instance in self._sandboxes.items():
                if sandbox_id.startswith(prefix):
                    return sandbox_id, instance
        return None

    def find_by_role(self, task_id: str, role: SandboxRole) -> tuple[str, SandboxInstance] | None:
        """First running sandbox related to *task_id* with the given role."""
        for sandbox_id, instance in self.all_for_task(task_id):
            if instance.role == role:
                return sandbox_id, instance
        return None

    def all_for_task(self, task_id: str) -> list[tuple[str, SandboxInstance]]:
        """Every running sandbox related to *task_id* (exact or prefix)."""
        with self._lock:
            return [
                (sandbox_id, instance)
                for sandbox_id, instance in self._sandboxes.items()
                if is_related_id(sandbox_id, task_id) and instance.is_running
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sandboxes)

    def __contains__(self, sandbox_id: object) -> bool:
        with self._lock:
            return sandbox_id in self._sandboxes

    def __iter__(self) -> Iterator[str]:
        return iter(self.all_ids())

    def all_ids(self) -> list[str]:
        with self._lock:
            return list(self._sandboxes)
