"""sandkit — per-task container sandboxes with crash recovery."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from sandkit.config import SandkitSettings as SandkitSettings
    from sandkit.manager import SandboxManager as SandboxManager

_LAZY_EXPORTS = {
    "SandboxManager": "sandkit.manager",
    "SandkitSettings": "sandkit.config",
}


def __getattr__(name: str) -> object:
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'sandkit' has no attribute {name!r}")
