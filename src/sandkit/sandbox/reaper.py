"""OrphanReaper — remove engine containers nobody is tracking.

Only runs on operator request: an automatic sweep could remove a container
another process is in the middle of creating.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sandkit.errors import EngineError
from sandkit.utils.telemetry import ATTR_ORPHANS, get_tracer

if TYPE_CHECKING:
    from sandkit.engine.client import EngineClient
    from sandkit.sandbox.store import SandboxStore

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)


class OrphanReaper:
    """Force-remove containers that match the naming convention but have no record."""

    def __init__(self, client: EngineClient, store: SandboxStore, *, name_prefix: str) -> None:
        self._client = client
        self._store = store
        self._prefix = name_prefix

    async def find_orphans(self) -> list[str]:
        """Container names present in the engine but absent from persistence."""
        try:
            names = await self._client.list_names(self._prefix)
        except EngineError as exc:
            logger.warning("Could not list containers: %s", exc)
            return []

        known = {record.container_name for record in self._store.find_all()}
        # The engine's name filter is a substring match; keep true prefix matches only.
        return [name for name in names if name.startswith(self._prefix) and name not in known]

    async def sweep(self, *, dry_run: bool = False) -> list[str]:
        """Remove orphans and return their names (or only list them if *dry_run*)."""
        with _tracer.start_as_current_span("sandbox.sweep") as span:
            orphans = await self.find_orphans()
            span.set_attribute(ATTR_ORPHANS, len(orphans))
            for name in orphans:
                if dry_run:
                    logger.info("Would remove orphaned container %s", name)
                    continue
                logger.info("Removing orphaned container %s", name)
                await self._client.remove(name)
        return orphans
