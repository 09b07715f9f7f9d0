"""OpenTelemetry setup helpers for the FastAPI app."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from paysub.common.config import CommonSettings

_configured = False


def setup_tracing(config: CommonSettings) -> None:
    """Register a tracer provider with OTLP HTTP exporter (once per process)."""

    global _configured
    if _configured or not config.tracing_enabled:
        return
    resource = Resource.create({"service.name": config.service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=config.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _configured = True


def instrument_app(app: FastAPI, config: CommonSettings) -> None:
    """Attach FastAPI auto-instrumentation for request spans."""

    if config.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)


def get_tracer():
    """Tracer for manual spans around gateway calls and reconciliation."""

    return trace.get_tracer("paysub")
