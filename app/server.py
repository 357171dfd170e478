import logging

from app.vars import SERVICE_NAME, OTLP_ENDPOINT, OTLP_HEADERS, ROUTE_PREFIX, TUNNEL_PATH
from fastapi import FastAPI
from .routes import router
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from typing import Sequence

from prometheus_fastapi_instrumentator import Instrumentator
from prometheus_client import Info

logger = logging.getLogger("uvicorn.error")


def check_tunnel_path(route_prefix: str, tunnel_path: str) -> None:
    """The tunnel subsystem owns its path; the proxy route must never cover it."""
    if not tunnel_path:
        return
    if (tunnel_path + "/").startswith(route_prefix) or route_prefix.startswith(
        tunnel_path + "/"
    ):
        raise RuntimeError(
            f"TUNNEL_PATH {tunnel_path!r} overlaps ROUTE_PREFIX {route_prefix!r}"
        )


check_tunnel_path(ROUTE_PREFIX, TUNNEL_PATH)

app = FastAPI()
instrumentator = Instrumentator()

instrumentator.instrument(app).expose(app)


def is_noise(span) -> bool:
    """ASGI body spans and scrapes of the metrics endpoint are not exported."""
    attributes = span.attributes or {}
    if attributes.get("asgi.event.type") == "http.response.body":
        return True
    return attributes.get("http.target") == "/metrics"


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops noise spans, which would otherwise outnumber
    the proxied requests.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [span for span in spans if not is_noise(span)]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=OTLP_HEADERS or None,
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )
    logger.info(f"[Server] Exporting traces to {OTLP_ENDPOINT}")

FastAPIInstrumentor.instrument_app(app, excluded_urls="/metrics")

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

app.include_router(router)
