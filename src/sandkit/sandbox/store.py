"""Sandbox persistence adapters.

:class:`SandboxStore` defines the storage protocol the lifecycle controller
writes through on every create, destroy, and status change.
:class:`InMemoryStore` is a dict-based implementation for tests and
single-process use; :class:`JsonFileStore` keeps every record in one JSON
document so sandboxes survive process restarts.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

from filelock import FileLock
from pydantic import ValidationError

from sandkit.sandbox.models import SandboxInstance, SandboxStatus

logger = logging.getLogger(__name__)


class SandboxStore(Protocol):
    """Durable storage protocol for :class:`SandboxInstance` records."""

    def upsert(self, instance: SandboxInstance) -> None:
        """Insert or replace the record keyed by ``instance.task_id``."""
        ...

    def find_all(self) -> list[SandboxInstance]:
        """Return every record, newest first."""
        ...

    def find_by_task_id(self, task_id: str) -> SandboxInstance | None:
        ...

    def delete_by_task_id(self, task_id: str) -> bool:
        """Remove a record; return ``False`` if it did not exist."""
        ...

    def update_status(self, task_id: str, status: SandboxStatus) -> bool:
        """Set the status of a record; return ``False`` if it did not exist."""
        ...


class InMemoryStore:
    """Dict-backed :class:`SandboxStore`.

    Stores records as serialised JSON so that every read returns a fresh,
    independent copy (mimicking a real persistence layer).
    """

    def __init__(self) -> None:
        self._records: dict[str, str] = {}
        self._lock = threading.Lock()

    def upsert(self, instance: SandboxInstance) -> None:
        with self._lock:
            self._records[instance.task_id] = instance.model_dump_json()

    def find_all(self) -> list[SandboxInstance]:
        with self._lock:
            raw = list(self._records.values())
        records = [SandboxInstance.model_validate_json(r) for r in raw]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def find_by_task_id(self, task_id: str) -> SandboxInstance | None:
        with self._lock:
            raw = self._records.get(task_id)
        return SandboxInstance.model_validate_json(raw) if raw is not None else None

    def delete_by_task_id(self, task_id: str) -> bool:
        with self._lock:
            return self._records.pop(task_id, None) is not None

    def update_status(self, task_id: str, status: SandboxStatus) -> bool:
        with self._lock:
            raw = self._records.get(task_id)
            if raw is None:
                return False
            record = SandboxInstance.model_validate_json(raw)
            record.status = status
            self._records[task_id] = record.model_dump_json()
            return True


class JsonFileStore:
    """File-backed :class:`SandboxStore` holding ``{task_id: record}`` as JSON.

    Every write rewrites the document through a temporary file and
    :func:`os.replace`, so a crash mid-write leaves the previous version.
    Each read-modify-write holds ``<path>.lock`` so that several processes
    can share one state file. Records that no longer validate are skipped
    with a warning.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._file_lock = FileLock(f"{self.path}.lock")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self._file_lock:
            yield

    def upsert(self, instance: SandboxInstance) -> None:
        with self._locked():
            data = self._read()
            data[instance.task_id] = instance.model_dump(mode="json")
            self._write(data)
        logger.debug("Persisted sandbox for task %s", instance.task_id)

    def find_all(self) -> list[SandboxInstance]:
        with self._locked():
            data = self._read()
        records: list[SandboxInstance] = []
        for task_id, raw in data.items():
            try:
                records.append(SandboxInstance.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping unreadable sandbox record %s: %s", task_id, exc)
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def find_by_task_id(self, task_id: str) -> SandboxInstance | None:
        with self._locked():
            raw = self._read().get(task_id)
        if raw is None:
            return None
        try:
            return SandboxInstance.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Unreadable sandbox record %s: %s", task_id, exc)
            return None

    def delete_by_task_id(self, task_id: str) -> bool:
        with self._locked():
            data = self._read()
            if data.pop(task_id, None) is None:
                return False
            self._write(data)
        logger.debug("Deleted sandbox record for task %s", task_id)
        return True

    def update_status(self, task_id: str, status: SandboxStatus) -> bool:
        with self._locked():
            data = self._read()
            raw = data.get(task_id)
            if raw is None:
                return False
            raw["status"] = status.value
            self._write(data)
        return True

    def _read(self) -> dict[str, Any]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.error("Sandbox state file %s is corrupt: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
