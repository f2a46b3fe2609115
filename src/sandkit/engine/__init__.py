"""Container engine boundary — CLI wrapper, availability probe, port lookup."""

from sandkit.engine.client import EngineClient, EngineOutput
from sandkit.engine.ports import PortMappingResolver, parse_port_output
from sandkit.engine.probe import EngineAvailabilityProbe

__all__ = [
    "EngineAvailabilityProbe",
    "EngineClient",
    "EngineOutput",
    "PortMappingResolver",
    "parse_port_output",
]
