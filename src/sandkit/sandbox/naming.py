"""Deterministic container naming and identity hints.

The container name is a pure function of the task id, so a restarted process
(or a second process) re-derives the same name without shared state:

    ``<prefix><first 12 hex chars of md5(task_id)>``

With the default ``agent-sandbox-`` prefix that is 26 characters of
``[a-z0-9-]``, well inside Docker's name charset and length limits.  md5 is
used for naming only, not for security.
"""

from __future__ import annotations

import hashlib
import re

from sandkit.sandbox.models import SandboxRole

DEFAULT_NAME_PREFIX = "agent-sandbox-"
HASH_LENGTH = 12

_SETUP_SUFFIX = re.compile(r"-setup-(.+)$")
_FRONTEND_HINTS = ("frontend", "flutter", "mobile", "web", "client", "app-")
_BACKEND_HINTS = ("backend", "api", "server", "service")


def container_name(task_id: str, prefix: str = DEFAULT_NAME_PREFIX) -> str:
    """Return the deterministic container name for *task_id*."""
    digest = hashlib.md5(task_id.encode("utf-8")).hexdigest()  # noqa: S324
    return f"{prefix}{digest[:HASH_LENGTH]}"


def extract_repo_name(task_id: str) -> str | None:
    """Extract the repository from auxiliary ids shaped ``<task>-setup-<repo>``."""
    match = _SETUP_SUFFIX.search(task_id)
    return match.group(1) if match else None


def detect_role(image: str, repo_name: str | None = None, language: str | None = None) -> SandboxRole:
    """Guess the routing role from the image, repository name, or language."""
    if "flutter" in image or "dart" in image:
        return SandboxRole.FRONTEND

    if repo_name:
        lowered = repo_name.lower()
        if any(hint in lowered for hint in _FRONTEND_HINTS):
            return SandboxRole.FRONTEND
        if any(hint in lowered for hint in _BACKEND_HINTS):
            return SandboxRole.BACKEND

    if language in ("flutter", "dart"):
        return SandboxRole.FRONTEND

    return SandboxRole.BACKEND
