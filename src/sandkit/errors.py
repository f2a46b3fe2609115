"""Shared error types for the sandbox lifecycle manager."""


class SandkitError(Exception):
    """Base error for all sandkit failures."""


class EngineError(SandkitError):
    """A container engine CLI invocation failed.

    Raised by :class:`~sandkit.engine.client.EngineClient` and caught by the
    components that call it; public operations convert it into one of the
    typed errors below, ``None``, or a :class:`CommandResult`.
    """

    def __init__(self, detail: str = "", *, returncode: int | None = None, stderr: str = "") -> None:
        self.detail = detail
        self.returncode = returncode
        self.stderr = stderr
        super().__init__("Engine error" + (f": {detail}" if detail else ""))

    @property
    def not_found(self) -> bool:
        """Whether the engine reported that the object does not exist."""
        text = self.stderr or self.detail
        return "No such object" in text or "No such container" in text


class EngineUnavailableError(SandkitError):
    """The container engine is not installed or its daemon is unreachable."""

    def __init__(self, task_id: str = "") -> None:
        self.task_id = task_id
        msg = "Container engine unavailable"
        if task_id:
            msg += f" (cannot create sandbox for task {task_id})"
        super().__init__(msg)


class SandboxCreateError(SandkitError):
    """The engine rejected container creation for a task."""

    def __init__(self, task_id: str, stderr: str = "") -> None:
        self.task_id = task_id
        self.stderr = stderr
        super().__init__(f"Failed to create sandbox for task {task_id}" + (f": {stderr}" if stderr else ""))


class SettingsError(SandkitError):
    """Raised when a settings file fails parsing or validation."""
