"""Tracing for sandbox lifecycle operations.

Components take a module-level tracer from :func:`get_tracer`; until
:func:`configure_telemetry` installs an SDK provider every span is a no-op,
so instrumented code never depends on ``opentelemetry-sdk``.

Spans emitted:

``sandbox.create``, ``sandbox.destroy``, ``sandbox.reconcile``,
``sandbox.exec``, ``sandbox.sweep``
"""

from __future__ import annotations

from typing import Any

from opentelemetry import trace

ATTR_TASK_ID = "sandkit.task.id"
ATTR_SANDBOX_ID = "sandkit.sandbox.id"
ATTR_CONTAINER_NAME = "sandkit.container.name"
ATTR_IMAGE = "sandkit.image"
ATTR_STATUS = "sandkit.status"
ATTR_EXECUTED_IN = "sandkit.exec.location"
ATTR_EXIT_CODE = "sandkit.exec.exit_code"
ATTR_RECORDS = "sandkit.reconcile.records"
ATTR_ADOPTED = "sandkit.reconcile.adopted"
ATTR_ORPHANS = "sandkit.sweep.orphans"

_INSTRUMENTATION_NAME = "sandkit"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Tracer for *name* (no-op unless an SDK provider is installed)."""
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


def configure_telemetry(
    *,
    service_name: str = "sandkit",
    export_to_console: bool = False,
    otlp_endpoint: str | None = None,
) -> None:
    """Install an SDK tracer provider (requires ``sandkit[otel]``).

    Console export writes span JSON to stdout, so it is off by default to
    keep CLI output clean.

    Raises:
        ImportError: ``opentelemetry-sdk`` is missing, or ``otlp_endpoint``
            is set and ``opentelemetry-exporter-otlp`` is missing.
    """
    try:
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
        from opentelemetry.sdk.trace.export import (  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )
    except ImportError as exc:
        msg = "opentelemetry-sdk is required for configure_telemetry(). Install it with: pip install sandkit[otel]"
        raise ImportError(msg) from exc

    processors: list[Any] = []
    if export_to_console:
        processors.append(SimpleSpanProcessor(ConsoleSpanExporter()))
    if otlp_endpoint:
        processors.append(BatchSpanProcessor(_otlp_exporter(otlp_endpoint)))

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))  # pyright: ignore[reportUnknownVariableType]
    for processor in processors:
        provider.add_span_processor(processor)  # pyright: ignore[reportUnknownMemberType]
    trace.set_tracer_provider(provider)  # pyright: ignore[reportUnknownArgumentType]


def _otlp_exporter(endpoint: str) -> Any:
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter  # pyright: ignore[reportMissingImports,reportUnknownVariableType]
    except ImportError as exc:
        msg = "opentelemetry-exporter-otlp is required for OTLP export. Install it with: pip install sandkit[otel]"
        raise ImportError(msg) from exc
    return OTLPSpanExporter(endpoint=endpoint)
