"""Tests for the sandbox lifecycle CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from sandkit.cli import main
from sandkit.manager import SandboxManager
from sandkit.sandbox.naming import container_name
from tests.conftest import FakeEngine, StubProbe, make_settings, write_stub_engine


def _make_manager(engine: FakeEngine | None = None, *, ready: bool = True) -> SandboxManager:
    return SandboxManager(make_settings(), client=engine or FakeEngine(), probe=StubProbe(ready))  # type: ignore[arg-type]


@pytest.fixture
def manager() -> Iterator[SandboxManager]:
    mgr = _make_manager()
    with patch.object(SandboxManager, "from_settings", return_value=mgr):
        yield mgr


class TestStatus:
    def test_status(self, manager: SandboxManager) -> None:
        result = CliRunner().invoke(main, ["status"])
        assert result.exit_code == 0
        assert "Sandbox Manager" in result.output
        assert "available" in result.output

    def test_status_json(self, manager: SandboxManager) -> None:
        result = CliRunner().invoke(main, ["status", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["engine_available"] is True
        assert data["active_sandboxes"] == 0


class TestList:
    def test_empty(self, manager: SandboxManager) -> None:
        result = CliRunner().invoke(main, ["list"])
        assert result.exit_code == 0
        assert "No sandboxes." in result.output

    def test_table(self, manager: SandboxManager, tmp_path: Path) -> None:
        runner = CliRunner()
        runner.invoke(main, ["create", "t1", str(tmp_path), "--image", "node:20"])
        result = runner.invoke(main, ["list"])
        assert result.exit_code == 0
        assert "Sandboxes" in result.output
        assert "t1" in result.output

    def test_json(self, manager: SandboxManager, tmp_path: Path) -> None:
        runner = CliRunner()
        runner.invoke(main, ["create", "t1", str(tmp_path), "--image", "node:20"])
        result = runner.invoke(main, ["list", "--json"])
        data = json.loads(result.output)
        assert data["t1"]["container_name"] == container_name("t1")
        assert data["t1"]["status"] == "running"


class TestCreate:
    def test_create(self, manager: SandboxManager, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            main,
            [
                "create", "t1", str(tmp_path / "ws"),
                "--image", "node:20",
                "--port", "0:3000",
                "--env", "CI=1",
                "--network", "bridged",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "t1" in result.output
        assert "running" in result.output
        inst = manager.registry.get("t1")
        assert inst is not None
        assert inst.config.env == {"CI": "1"}
        assert inst.config.ports == ["0:3000"]
        assert inst.config.network_mode.value == "bridged"

    def test_language_picks_image(self, manager: SandboxManager, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["create", "t1", str(tmp_path), "--language", "go"])
        assert result.exit_code == 0
        assert manager.registry.get("t1").image == "golang:1.22-bookworm"  # type: ignore[union-attr]

    def test_invalid_port(self, manager: SandboxManager, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["create", "t1", str(tmp_path), "--image", "x", "--port", "abc"])
        assert result.exit_code == 2
        assert "Invalid sandbox config" in result.output

    def test_invalid_env(self, manager: SandboxManager, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["create", "t1", str(tmp_path), "--image", "x", "--env", "NOVALUE"])
        assert result.exit_code == 2
        assert "KEY=VALUE" in result.output

    def test_engine_unavailable(self, tmp_path: Path) -> None:
        with patch.object(SandboxManager, "from_settings", return_value=_make_manager(ready=False)):
            result = CliRunner().invoke(main, ["create", "t1", str(tmp_path), "--image", "x"])
        assert result.exit_code == 1
        assert "unavailable" in result.output

    def test_create_failure(self, manager: SandboxManager, tmp_path: Path) -> None:
        assert isinstance(manager.client, FakeEngine)
        manager.client.create_error = "pull access denied"
        result = CliRunner().invoke(main, ["create", "t1", str(tmp_path), "--image", "nope"])
        assert result.exit_code == 1
        assert "pull access denied" in result.output


class TestExec:
    def test_host_fallback(self, manager: SandboxManager) -> None:
        result = CliRunner().invoke(main, ["exec", "t1", "echo hi"])
        assert result.exit_code == 0
        assert "hi" in result.output

    def test_exit_code_passthrough(self, manager: SandboxManager) -> None:
        result = CliRunner().invoke(main, ["exec", "t1", "exit 3"])
        assert result.exit_code == 3

    def test_timeout(self, manager: SandboxManager) -> None:
        result = CliRunner().invoke(main, ["exec", "t1", "sleep 10", "--timeout", "0.3"])
        assert result.exit_code == 124
        assert "Command timed out" in result.output

    def test_in_sandbox(self, tmp_path: Path) -> None:
        mgr = _make_manager(FakeEngine(write_stub_engine(tmp_path)))
        with patch.object(SandboxManager, "from_settings", return_value=mgr):
            runner = CliRunner()
            runner.invoke(main, ["create", "t1", str(tmp_path / "ws"), "--image", "x"])
            result = runner.invoke(main, ["exec", "t1", 'printf %s "$GREETING"', "--env", "GREETING=hello"])
        assert result.exit_code == 0
        assert "hello" in result.output
        assert "sandbox" in result.output


class TestDestroy:
    def test_destroy(self, manager: SandboxManager, tmp_path: Path) -> None:
        runner = CliRunner()
        runner.invoke(main, ["create", "t1", str(tmp_path), "--image", "x"])
        result = runner.invoke(main, ["destroy", "t1"])
        assert result.exit_code == 0
        assert "Destroyed sandbox for t1." in result.output

    def test_nothing_to_destroy(self, manager: SandboxManager) -> None:
        result = CliRunner().invoke(main, ["destroy", "t1"])
        assert result.exit_code == 0
        assert "No sandbox found for t1." in result.output


class TestResume:
    def test_resume(self, manager: SandboxManager, tmp_path: Path) -> None:
        assert isinstance(manager.client, FakeEngine)
        manager.client.add_container(container_name("t1"), "exited")
        result = CliRunner().invoke(main, ["resume", "t1", str(tmp_path)])
        assert result.exit_code == 0
        assert "running" in result.output

    def test_nothing_to_resume(self, manager: SandboxManager, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["resume", "t1", str(tmp_path)])
        assert result.exit_code == 1
        assert "No recoverable container" in result.output
