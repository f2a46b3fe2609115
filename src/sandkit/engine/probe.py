"""EngineAvailabilityProbe — decide whether sandboxes can be used at all.

The probe never raises: ``False`` means "fall back to host execution".
"""

from __future__ import annotations

import asyncio
import getpass
import logging
import shutil
import sys
import time

from sandkit.engine.client import EngineClient
from sandkit.errors import EngineError

logger = logging.getLogger(__name__)

_INSTALL_TIMEOUT = 300.0
_START_TIMEOUT = 30.0
_INFO_TIMEOUT = 10.0


class EngineAvailabilityProbe:
    """Detect, install, and start the container engine on first use.

    Steps performed by :meth:`ensure_ready`:

    1. Engine CLI on ``PATH``?  If not, try a platform install (best effort).
    2. Daemon answers ``info``?  If not, try to start it and poll until
       ready or ``ready_timeout`` elapses.

    The outcome is cached until :meth:`reset`.
    """

    def __init__(
        self,
        client: EngineClient | None = None,
        *,
        auto_install: bool = True,
        auto_start: bool = True,
        ready_timeout: float = 60.0,
        poll_interval: float = 2.0,
    ) -> None:
        self._client = client or EngineClient()
        self._auto_install = auto_install
        self._auto_start = auto_start
        self._ready_timeout = ready_timeout
        self._poll_interval = poll_interval
        self._lock = asyncio.Lock()
        self._result: bool | None = None
        self.version: str | None = None

    @property
    def available(self) -> bool:
        """Cached result; ``False`` until a probe has succeeded."""
        return bool(self._result)

    @property
    def probed(self) -> bool:
        return self._result is not None

    def reset(self) -> None:
        self._result = None
        self.version = None

    async def ensure_ready(self) -> bool:
        if self._result is not None:
            return self._result
        async with self._lock:
            if self._result is None:
                self._result = await self._probe()
        return self._result

    async def _probe(self) -> bool:
        platform = sys.platform
        binary = self._client.binary
        logger.info("Probing container engine %r on %s", binary, platform)

        try:
            if not self.is_installed():
                if not self._auto_install:
                    logger.warning("%s not found on PATH; falling back to host execution", binary)
                    return False
                logger.info("%s not found, attempting install", binary)
                if not await self._install(platform) or not self.is_installed():
                    logger.warning("Could not install %s; falling back to host execution", binary)
                    return False

            if not await self.daemon_running():
                if not self._auto_start:
                    logger.warning("%s daemon not running; falling back to host execution", binary)
                    return False
                logger.info("%s daemon not running, attempting to start it", binary)
                if not await self._start_daemon(platform):
                    logger.warning("Could not start %s daemon; falling back to host execution", binary)
                    return False
                if not await self._wait_until_ready():
                    logger.warning(
                        "%s daemon not ready after %ss; falling back to host execution",
                        binary,
                        self._ready_timeout,
                    )
                    return False

            out = await self._client.run(["--version"], timeout=_INFO_TIMEOUT, ignore_errors=True)
            self.version = out.stdout or None
        except Exception:
            logger.exception("Engine probe failed; falling back to host execution")
            return False

        logger.info("Container engine ready: %s", self.version or binary)
        return True

    def is_installed(self) -> bool:
        return shutil.which(self._client.binary) is not None

    async def daemon_running(self) -> bool:
        try:
            await self._client.run(["info"], timeout=_INFO_TIMEOUT)
        except EngineError:
            return False
        return True

    async def _wait_until_ready(self) -> bool:
        deadline = time.monotonic() + self._ready_timeout
        while True:
            if await self.daemon_running():
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self._poll_interval)

    async def _install(self, platform: str) -> bool:
        if platform.startswith("linux"):
            if not await _host_ok(["sudo", "-n", "true"], timeout=_START_TIMEOUT):
                logger.warning("No passwordless sudo; cannot install the engine")
                return False
            if not await _host_ok(
                ["sh", "-c", "curl -fsSL https://get.docker.com | sudo sh"],
                timeout=_INSTALL_TIMEOUT,
            ):
                return False
            user = getpass.getuser()
            if not await _host_ok(["sudo", "usermod", "-aG", "docker", user], timeout=_START_TIMEOUT):
                logger.warning("Could not add %s to the docker group", user)
            return True

        if platform == "darwin":
            if shutil.which("brew") is None:
                logger.warning("Homebrew not available; install Docker Desktop manually")
                return False
            return await _host_ok(["brew", "install", "--cask", "docker"], timeout=_INSTALL_TIMEOUT)

        logger.warning("Automatic engine install is not supported on %s", platform)
        return False

    async def _start_daemon(self, platform: str) -> bool:
        if platform.startswith("linux"):
            if await _host_ok(["sudo", "-n", "systemctl", "start", "docker"], timeout=_START_TIMEOUT):
                return True
            return await _host_ok(["sudo", "-n", "service", "docker", "start"], timeout=_START_TIMEOUT)
        if platform == "darwin":
            return await _host_ok(["open", "-a", "Docker"], timeout=_START_TIMEOUT)
        if platform == "win32":
            return await _host_ok(
                ["cmd", "/c", "start", "", r"C:\Program Files\Docker\Docker\Docker Desktop.exe"],
                timeout=_START_TIMEOUT,
            )
        return False


async def _host_ok(cmd: list[str], *, timeout: float) -> bool:
    """Run a host command and report whether it exited 0."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        logger.debug("%s could not be started: %s", cmd[0], exc)
        return False
    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        logger.debug("%s timed out after %ss", " ".join(cmd), timeout)
        return False
    if proc.returncode != 0:
        logger.debug("%s failed: %s", " ".join(cmd), stderr.decode(errors="replace").strip())
        return False
    return True
