from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace

from factory_console.observability.config import TelemetryConfig
from factory_console.observability.tracing import set_capture_io_default

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import SpanExporter

logger = logging.getLogger(__name__)


def configure_telemetry(config: TelemetryConfig | None = None) -> TracerProvider | None:
    """Install a global tracer provider exporting console spans over OTLP.

    Returns the provider, or ``None`` when telemetry is switched off or has
    nowhere to send spans. A broken exporter setup is logged and leaves the
    API's no-op tracer in place; the console itself keeps working.
    """
    settings = (config or TelemetryConfig()).resolve()
    set_capture_io_default(settings.capture_tool_io)
    if not settings.enabled:
        logger.info("Telemetry disabled by FACTORY_OTEL_ENABLED")
        return None
    if not settings.exporter_endpoint:
        logger.info("No OTLP endpoint set; spans stay in-process")
        return None

    try:
        provider = _build_provider(settings)
    except Exception:
        logger.exception("Telemetry setup failed; continuing without export")
        return None

    trace.set_tracer_provider(provider)
    if settings.instrument_httpx:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    logger.info(
        "Exporting spans for %s to %s (%s)",
        settings.service_name,
        settings.exporter_endpoint,
        settings.exporter_protocol,
    )
    return provider


def _build_provider(settings: TelemetryConfig) -> TracerProvider:
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider as SdkTracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

    provider = SdkTracerProvider(
        resource=Resource.create({"service.name": settings.service_name})
    )
    exporter = _exporter_for(settings)
    processor_cls = BatchSpanProcessor if settings.batch_spans else SimpleSpanProcessor
    provider.add_span_processor(processor_cls(exporter))
    return provider


def _exporter_for(settings: TelemetryConfig) -> SpanExporter:
    assert settings.exporter_endpoint is not None
    headers = settings.exporter_headers or None
    if settings.exporter_protocol == "http/protobuf":
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter as HttpExporter,
        )

        return HttpExporter(endpoint=settings.exporter_endpoint, headers=headers)

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
        OTLPSpanExporter as GrpcExporter,
    )

    return GrpcExporter(endpoint=settings.exporter_endpoint, headers=headers)
