"""EngineClient — thin async/sync wrapper around the container engine CLI.

Uses the ``docker`` CLI via subprocess (no docker-py dependency).  Every call
returns an :class:`EngineOutput` or raises :class:`~sandkit.errors.EngineError`;
``OSError`` from process spawning never escapes this module.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess

from sandkit.errors import EngineError

logger = logging.getLogger(__name__)

DEFAULT_ENGINE = "docker"


class EngineOutput:
    """Captured output of one engine CLI invocation."""

    __slots__ = ("stdout", "stderr", "returncode")

    def __init__(self, stdout: str = "", stderr: str = "", returncode: int = 0) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode

    def __repr__(self) -> str:
        return f"EngineOutput(returncode={self.returncode}, stdout={self.stdout!r}, stderr={self.stderr!r})"


class EngineClient:
    """Runs engine subcommands such as ``inspect``, ``run``, ``rm``."""

    def __init__(self, binary: str = DEFAULT_ENGINE) -> None:
        self.binary = binary

    async def run(
        self,
        args: list[str],
        *,
        timeout: float | None = None,
        ignore_errors: bool = False,
    ) -> EngineOutput:
        """Run ``<binary> *args`` and return its output."""
        cmd = [self.binary, *args]
        logger.debug("engine: %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            if ignore_errors:
                return EngineOutput(stderr=str(exc), returncode=127)
            raise EngineError(f"failed to run {self.binary}: {exc}", returncode=127) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            if ignore_errors:
                return EngineOutput(stderr="timed out", returncode=124)
            raise EngineError(f"{self.binary} {args[0]} timed out after {timeout}s", returncode=124) from None

        return self._finish(args, proc.returncode or 0, stdout_bytes, stderr_bytes, ignore_errors)

    def run_sync(
        self,
        args: list[str],
        *,
        timeout: float | None = None,
        ignore_errors: bool = False,
    ) -> EngineOutput:
        """Blocking variant of :meth:`run`."""
        cmd = [self.binary, *args]
        logger.debug("engine (sync): %s", " ".join(cmd))
        try:
            completed = subprocess.run(cmd, capture_output=True, timeout=timeout, check=False)
        except subprocess.TimeoutExpired:
            if ignore_errors:
                return EngineOutput(stderr="timed out", returncode=124)
            raise EngineError(f"{self.binary} {args[0]} timed out after {timeout}s", returncode=124) from None
        except OSError as exc:
            if ignore_errors:
                return EngineOutput(stderr=str(exc), returncode=127)
            raise EngineError(f"failed to run {self.binary}: {exc}", returncode=127) from exc

        return self._finish(args, completed.returncode, completed.stdout, completed.stderr, ignore_errors)

    def _finish(
        self,
        args: list[str],
        returncode: int,
        stdout_bytes: bytes | None,
        stderr_bytes: bytes | None,
        ignore_errors: bool,
    ) -> EngineOutput:
        stdout = stdout_bytes.decode(errors="replace").strip() if stdout_bytes else ""
        stderr = stderr_bytes.decode(errors="replace").strip() if stderr_bytes else ""

        if returncode != 0 and not ignore_errors:
            raise EngineError(
                f"{self.binary} {args[0]} failed (rc={returncode}): {stderr or stdout}",
                returncode=returncode,
                stderr=stderr,
            )
        return EngineOutput(stdout=stdout, stderr=stderr, returncode=returncode)

    # ------------------------------------------------------------------
    # Container helpers
    # ------------------------------------------------------------------

    async def inspect_status(self, name: str) -> str | None:
        """Return the engine state (``running``, ``exited``...) or ``None`` if absent."""
        try:
            out = await self.run(["inspect", "--format", "{{.State.Status}}", name], timeout=30)
        except EngineError as exc:
            if exc.not_found:
                return None
            raise
        return out.stdout

    async def inspect_field(self, name: str, template: str) -> str:
        out = await self.run(["inspect", "--format", template, name], timeout=30)
        return out.stdout

    async def start(self, name: str) -> None:
        await self.run(["start", name], timeout=60)

    async def stop(self, name: str, grace_period: int = 5) -> None:
        """Stop a container, ignoring failures."""
        await self.run(["stop", "-t", str(grace_period), name], timeout=grace_period + 30, ignore_errors=True)

    async def remove(self, name: str) -> None:
        """Force-remove a container, ignoring failures (absence included)."""
        await self.run(["rm", "-f", name], timeout=60, ignore_errors=True)

    async def list_names(self, name_filter: str) -> list[str]:
        """List all container names (running or not) matching *name_filter*."""
        out = await self.run(
            ["ps", "-a", "--filter", f"name={name_filter}", "--format", "{{.Names}}"],
            timeout=30,
        )
        return [line.strip() for line in out.stdout.splitlines() if line.strip()]
