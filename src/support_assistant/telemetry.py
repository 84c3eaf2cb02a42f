"""Tracing for the support assistant.

``OBSERVABILITY`` selects the backend: ``logfire``, ``otel`` or ``off``
(the default).  Both backends live in the ``telemetry`` extra and are
imported only when selected.  Health probes are never traced.
"""

from __future__ import annotations

from fastapi import FastAPI
from loguru import logger

from support_assistant import __version__
from support_assistant.config import Settings

_HEALTH_ROUTES = "/health,/api/chat/health,/api/kb/health"


def setup_telemetry(app: FastAPI, settings: Settings) -> str:
    """Instrument ``app`` for the configured backend and return the active mode."""
    mode = settings.observability.lower()
    if mode == "off":
        logger.info("Observability disabled")
        return "off"

    setup = _BACKENDS.get(mode)
    if setup is None:
        logger.warning("Unknown observability mode '{}', tracing stays off", mode)
        return "off"

    setup(app, settings)
    return mode


def _setup_logfire(app: FastAPI, settings: Settings) -> None:
    import logfire

    logfire.configure(
        service_name=settings.otel_service_name,
        service_version=__version__,
        send_to_logfire="if-token-present",
    )
    logfire.instrument_pydantic_ai()
    logfire.instrument_fastapi(app, excluded_urls=_HEALTH_ROUTES)
    logger.info("Logfire tracing enabled | service={}", settings.otel_service_name)


def build_tracer_provider(settings: Settings):
    """Tracer provider exporting over OTLP/HTTP, plus stdout when requested."""
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )

    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": settings.otel_service_name, "service.version": __version__}
        )
    )
    endpoint = settings.otel_exporter_otlp_endpoint.rstrip("/")
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces")))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    return provider


def _setup_otel(app: FastAPI, settings: Settings) -> None:
    from opentelemetry import trace
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    trace.set_tracer_provider(build_tracer_provider(settings))
    FastAPIInstrumentor.instrument_app(app, excluded_urls=_HEALTH_ROUTES)
    logger.info(
        "OpenTelemetry tracing enabled | service={} | endpoint={}",
        settings.otel_service_name,
        settings.otel_exporter_otlp_endpoint,
    )


_BACKENDS = {"logfire": _setup_logfire, "otel": _setup_otel}


def is_observability_active(settings: Settings) -> bool:
    return settings.observability.lower() in _BACKENDS
