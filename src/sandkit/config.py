"""Settings for the sandbox manager, loaded from YAML.

Example ``sandkit.yaml``::

    engine: docker
    state_file: ~/.sandkit/sandboxes.json
    defaults:
      memory_limit: 8g
      network_mode: bridged
    language_images:
      python: python:3.12-bookworm
    telemetry:
      enabled: true
      otlp_endpoint: ${OTLP_ENDPOINT}
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from sandkit.errors import SettingsError
from sandkit.sandbox.models import NetworkMode, SandboxConfig
from sandkit.sandbox.naming import DEFAULT_NAME_PREFIX

NETWORK_MODE_ENV = "SANDKIT_NETWORK_MODE"

DEFAULT_LANGUAGE_IMAGES: dict[str, str] = {
    "flutter": "ghcr.io/cirruslabs/flutter:3.24.0",
    "dart": "ghcr.io/cirruslabs/flutter:3.24.0",
    "nodejs": "node:20-bookworm",
    "typescript": "node:20-bookworm",
    "python": "python:3.12-bookworm",
    "go": "golang:1.22-bookworm",
    "rust": "rust:1.75-bookworm",
    "java": "eclipse-temurin:21-jdk",
    "ruby": "ruby:3.3-bookworm",
    "php": "php:8.3-apache",
    "dotnet": "mcr.microsoft.com/dotnet/sdk:8.0",
    "multi-runtime": "ghcr.io/cirruslabs/flutter:3.24.0",
    "fullstack": "ghcr.io/cirruslabs/flutter:3.24.0",
}


def _default_network_mode() -> NetworkMode:
    raw = os.environ.get(NETWORK_MODE_ENV, "").strip().lower()
    try:
        return NetworkMode(raw) if raw else NetworkMode.HOST
    except ValueError:
        return NetworkMode.HOST


class TelemetrySettings(BaseModel):
    """Optional telemetry configuration."""

    enabled: bool = False
    otlp_endpoint: str | None = None


class SandboxDefaults(BaseModel):
    """Field defaults applied to every new :class:`SandboxConfig`."""

    memory_limit: str = "4g"
    cpu_limit: str = "2"
    network_mode: NetworkMode = Field(default_factory=_default_network_mode)
    workdir: str = "/workspace"


class SandkitSettings(BaseModel):
    """Top-level settings for :class:`~sandkit.manager.SandboxManager`."""

    engine: str = "docker"
    name_prefix: str = Field(default=DEFAULT_NAME_PREFIX, pattern=r"^[a-z0-9][a-z0-9_.-]*$")
    state_file: Path | None = None
    default_image: str = "ubuntu:22.04"
    language_images: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_LANGUAGE_IMAGES))
    defaults: SandboxDefaults = Field(default_factory=SandboxDefaults)
    run_as_host_user: bool = True
    exec_timeout: float = Field(default=300.0, gt=0)
    create_timeout: float = Field(default=300.0, gt=0)
    stop_grace_period: int = Field(default=5, ge=0)
    probe_ready_timeout: float = Field(default=60.0, ge=0)
    probe_poll_interval: float = Field(default=2.0, gt=0)
    auto_install: bool = True
    auto_start: bool = True
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)

    def image_for_language(self, language: str | None) -> str:
        """Map a language hint to an image, falling back to ``default_image``."""
        if not language:
            return self.default_image
        return self.language_images.get(language.lower(), self.default_image)

    def build_config(self, image: str, overrides: SandboxConfig | None = None) -> SandboxConfig:
        """Merge *overrides* on top of the defaults with *image* taking precedence."""
        base: dict[str, Any] = self.defaults.model_dump()
        if overrides is not None:
            base.update(overrides.model_dump(exclude_unset=True))
        base["image"] = image
        return SandboxConfig.model_validate(base)


class SettingsLoader:
    """Load and validate a settings YAML file into :class:`SandkitSettings`."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> SandkitSettings:
        """Read YAML, interpolate env vars, and validate.

        Environment variables in the form ``${VAR}`` or ``$VAR`` are expanded
        using :func:`os.path.expandvars` before YAML parsing.

        Raises:
            SettingsError: On read errors, YAML parse errors, or validation failures.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SettingsError(f"Cannot read {self._path}: {exc}") from exc

        expanded = os.path.expandvars(raw)

        try:
            data: Any = yaml.safe_load(expanded)
        except yaml.YAMLError as exc:
            raise SettingsError(f"YAML parse error: {exc}") from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise SettingsError("Settings YAML must be a mapping")

        try:
            return SandkitSettings.model_validate(data)
        except ValidationError as exc:
            raise SettingsError(str(exc)) from exc
