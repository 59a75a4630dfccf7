"""
OpenTelemetry tracing.

HTTP requests and the Redis commands issued while serving them are traced
automatically; services open their own spans for the gate, confirmations,
enforcement and webhook handling.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Tracer

from hotspot.config import Settings, settings

# Comma-separated regexes matched against the URL by the FastAPI instrumentation.
UNTRACED_URLS = "health,metrics"


def setup_tracing(config: Settings | None = None) -> None:
    """Install an OTLP-exporting tracer provider and instrument redis-py."""
    config = config or settings
    if not config.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": config.service_name,
                "service.version": config.api_version,
                "hotspot.enforcers": ",".join(config.enforcer_names),
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=config.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)

    RedisInstrumentor().instrument()


def instrument_fastapi(app: Any, config: Settings | None = None) -> None:
    """Trace every request except health checks and metric scrapes."""
    config = config or settings
    if not config.tracing_enabled:
        return

    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_URLS)


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)
