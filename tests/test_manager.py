"""End-to-end tests for SandboxManager wiring."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from sandkit.config import TelemetrySettings
from sandkit.manager import SandboxManager
from sandkit.sandbox.models import SandboxStatus
from sandkit.sandbox.naming import container_name
from sandkit.sandbox.store import InMemoryStore, JsonFileStore
from tests.conftest import FakeEngine, StubProbe, make_settings, write_stub_engine


def _manager(engine: FakeEngine, state_file: Path | None = None, *, ready: bool = True) -> SandboxManager:
    return SandboxManager(
        make_settings(state_file=state_file),
        client=engine,
        probe=StubProbe(ready),  # type: ignore[arg-type]
    )


class TestWiring:
    def test_default_store_is_memory(self) -> None:
        assert isinstance(_manager(FakeEngine()).store, InMemoryStore)

    def test_state_file_store(self, tmp_path: Path) -> None:
        manager = _manager(FakeEngine(), tmp_path / "state.json")
        assert isinstance(manager.store, JsonFileStore)
        assert manager.store.path == tmp_path / "state.json"

    def test_builds_real_probe(self) -> None:
        manager = SandboxManager(make_settings(auto_install=False))
        assert manager.probe._auto_install is False
        assert manager.client.binary == "docker"

    def test_from_settings_configures_telemetry(self) -> None:
        settings = make_settings(telemetry=TelemetrySettings(enabled=True, otlp_endpoint="http://c:4317"))
        with patch("sandkit.manager.configure_telemetry") as configure:
            SandboxManager.from_settings(settings)
        configure.assert_called_once_with(otlp_endpoint="http://c:4317")

    def test_from_settings_without_telemetry(self) -> None:
        with patch("sandkit.manager.configure_telemetry") as configure:
            SandboxManager.from_settings(make_settings())
        configure.assert_not_called()


class TestScenarios:
    async def test_create_exec_destroy(self, tmp_path: Path) -> None:
        manager = _manager(FakeEngine(write_stub_engine(tmp_path)))

        inst = await manager.create_sandbox("t1", tmp_path / "ws", language="nodejs")
        assert inst.image == "node:20-bookworm"

        result = await manager.exec("t1", "echo hi")
        assert (result.exit_code, result.stdout, result.executed_in) == (0, "hi\n", "sandbox")

        other = await manager.exec("t10", "echo hi")
        assert other.executed_in == "host"

        assert await manager.destroy_sandbox("t1") is True
        after = manager.exec_sync("t1", "echo hi")
        assert after.executed_in == "host"

    async def test_engine_unavailable_falls_back_to_host(self) -> None:
        manager = _manager(FakeEngine(), ready=False)
        assert await manager.start() == 0
        result = await manager.exec("t1", "echo hi")
        assert result.executed_in == "host"
        assert not manager.get_status().engine_available

    async def test_restart_recovers_from_state_file(self, tmp_path: Path) -> None:
        state = tmp_path / "state.json"
        engine = FakeEngine()
        first = _manager(engine, state)
        await first.create_sandbox("t1", tmp_path / "ws", image="node:20")
        await first.create_sandbox("t2", tmp_path / "ws2", image="node:20")

        # Simulated crash: t1's container stopped, t2's was removed out-of-band.
        engine.containers[container_name("t1")]["state"] = "exited"
        del engine.containers[container_name("t2")]

        second = _manager(engine, state)
        assert await second.start() == 1
        assert second.registry.get("t1").status == SandboxStatus.RUNNING  # type: ignore[union-attr]
        assert second.registry.get("t2") is None
        assert [r.task_id for r in JsonFileStore(state).find_all()] == ["t1"]

    async def test_resume(self, tmp_path: Path) -> None:
        engine = FakeEngine()
        engine.add_container(container_name("t1"), "exited")
        manager = _manager(engine)
        inst = await manager.find_or_start_existing("t1", tmp_path)
        assert inst is not None and inst.is_running

    async def test_shutdown(self, tmp_path: Path) -> None:
        engine = FakeEngine()
        manager = _manager(engine)
        await manager.create_sandbox("a", tmp_path, image="x")
        await manager.create_sandbox("b", tmp_path, image="x")
        assert await manager.shutdown() == 2
        assert manager.all_sandboxes() == {}
        assert engine.containers == {}

    async def test_sweep_orphans(self, tmp_path: Path) -> None:
        engine = FakeEngine()
        manager = _manager(engine)
        await manager.create_sandbox("t1", tmp_path, image="x")
        engine.add_container(container_name("leftover"))
        assert await manager.sweep_orphans(dry_run=True) == [container_name("leftover")]
        assert await manager.sweep_orphans() == [container_name("leftover")]
        assert container_name("t1") in engine.containers

    async def test_setup_environment(self, tmp_path: Path) -> None:
        manager = _manager(FakeEngine(write_stub_engine(tmp_path)))
        await manager.create_sandbox("t1", tmp_path, image="x")
        result = await manager.setup_environment("t1", post_setup_commands=["true"])
        assert result.success

    async def test_refresh_status(self, tmp_path: Path) -> None:
        engine = FakeEngine()
        manager = _manager(engine)
        await manager.create_sandbox("t1", tmp_path, image="x")
        engine.containers[container_name("t1")]["state"] = "exited"
        inst = await manager.refresh_status("t1")
        assert inst is not None and inst.status == SandboxStatus.ERROR
        result = await manager.exec("t1", "echo hi")
        assert result.executed_in == "host"
