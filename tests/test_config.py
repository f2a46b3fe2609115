"""Tests for settings and the YAML loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from sandkit.config import NETWORK_MODE_ENV, SandboxDefaults, SandkitSettings, SettingsLoader
from sandkit.errors import SettingsError
from sandkit.sandbox.models import NetworkMode, SandboxConfig


class TestSandkitSettings:
    def test_defaults(self) -> None:
        settings = SandkitSettings()
        assert settings.engine == "docker"
        assert settings.name_prefix == "agent-sandbox-"
        assert settings.state_file is None
        assert settings.exec_timeout == 300

    def test_image_for_language(self) -> None:
        settings = SandkitSettings()
        assert settings.image_for_language("Python") == "python:3.12-bookworm"
        assert settings.image_for_language("cobol") == "ubuntu:22.04"
        assert settings.image_for_language(None) == "ubuntu:22.04"

    def test_build_config_precedence(self) -> None:
        settings = SandkitSettings(defaults=SandboxDefaults(memory_limit="8g", cpu_limit="3"))
        cfg = settings.build_config("node:20", SandboxConfig(image="ignored", cpu_limit="1"))
        assert cfg.image == "node:20"
        assert cfg.memory_limit == "8g"
        assert cfg.cpu_limit == "1"

    def test_build_config_without_overrides(self) -> None:
        cfg = SandkitSettings().build_config("node:20")
        assert cfg == SandboxConfig(image="node:20", network_mode=cfg.network_mode)

    def test_invalid_prefix(self) -> None:
        with pytest.raises(ValueError):
            SandkitSettings(name_prefix="Bad Prefix")

    def test_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError):
            SandkitSettings(exec_timeout=0)


class TestNetworkModeEnv:
    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(NETWORK_MODE_ENV, "Bridged")
        assert SandboxDefaults().network_mode == NetworkMode.BRIDGED

    def test_unknown_value_falls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(NETWORK_MODE_ENV, "overlay")
        assert SandboxDefaults().network_mode == NetworkMode.HOST

    def test_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(NETWORK_MODE_ENV, raising=False)
        assert SandboxDefaults().network_mode == NetworkMode.HOST


class TestSettingsLoader:
    def test_load(self, tmp_path: Path) -> None:
        path = tmp_path / "sandkit.yaml"
        path.write_text(
            "state_file: /var/lib/sandkit/state.json\n"
            "defaults:\n"
            "  memory_limit: 8g\n"
            "  network_mode: isolated\n"
            "language_images:\n"
            "  python: python:3.13\n"
        )
        settings = SettingsLoader(path).load()
        assert settings.state_file == Path("/var/lib/sandkit/state.json")
        assert settings.defaults.memory_limit == "8g"
        assert settings.defaults.network_mode == NetworkMode.ISOLATED
        assert settings.image_for_language("python") == "python:3.13"

    def test_env_interpolation(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SANDKIT_TEST_ENDPOINT", "http://collector:4317")
        path = tmp_path / "sandkit.yaml"
        path.write_text("telemetry:\n  enabled: true\n  otlp_endpoint: ${SANDKIT_TEST_ENDPOINT}\n")
        settings = SettingsLoader(path).load()
        assert settings.telemetry.enabled
        assert settings.telemetry.otlp_endpoint == "http://collector:4317"

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "sandkit.yaml"
        path.write_text("")
        assert SettingsLoader(path).load() == SandkitSettings()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SettingsError, match="Cannot read"):
            SettingsLoader(tmp_path / "nope.yaml").load()

    def test_bad_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "sandkit.yaml"
        path.write_text("defaults: [unclosed\n")
        with pytest.raises(SettingsError, match="YAML parse error"):
            SettingsLoader(path).load()

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "sandkit.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(SettingsError, match="mapping"):
            SettingsLoader(path).load()

    def test_validation_error(self, tmp_path: Path) -> None:
        path = tmp_path / "sandkit.yaml"
        path.write_text("exec_timeout: -1\n")
        with pytest.raises(SettingsError):
            SettingsLoader(path).load()
