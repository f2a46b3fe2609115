"""PortMappingResolver — discover dynamically assigned host ports.

``docker port <container>`` prints one mapping per line::

    3000/tcp -> 0.0.0.0:49153
    3000/tcp -> [::]:49153
    5353/udp -> 127.0.0.1:5353

Lines that do not match are ignored; nothing in this module raises.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from sandkit.errors import EngineError

if TYPE_CHECKING:
    from sandkit.engine.client import EngineClient

logger = logging.getLogger(__name__)

_PORT_LINE = re.compile(r"^\s*(\d+)/(?:tcp|udp)\s*->\s*(?:\[[0-9a-fA-F:]*\]|[^\s:]*):(\d+)\s*$")


def parse_port_output(text: str) -> dict[str, str]:
    """Parse ``docker port`` output into ``{container_port: host_port}``.

    The first mapping seen for a container port wins (IPv4 is listed before
    IPv6 by the engine).
    """
    ports: dict[str, str] = {}
    for line in text.splitlines():
        match = _PORT_LINE.match(line)
        if match is None:
            continue
        ports.setdefault(match.group(1), match.group(2))
    return ports


class PortMappingResolver:
    """Query the engine for a container's published-port table."""

    def __init__(self, client: EngineClient) -> None:
        self._client = client

    async def resolve(self, container_id: str) -> dict[str, str]:
        """Return published ports, or ``{}`` if none or the query failed."""
        try:
            out = await self._client.run(["port", container_id], timeout=30)
        except EngineError as exc:
            logger.debug("Port lookup failed for %s: %s", container_id, exc)
            return {}
        return parse_port_output(out.stdout)
