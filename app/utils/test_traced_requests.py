from unittest.mock import patch

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)

from app.utils.traced_requests import traced_request


def _tracer():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return provider.get_tracer(__name__), exporter


def test_span_attributes_and_start_log_are_redacted():
    tracer, exporter = _tracer()
    with patch("app.utils.traced_requests.logger") as logger:
        with traced_request(
            tracer,
            operation="proxy_request",
            target_url="https://example.com/a?token=secret",
            start_message="[Proxy] GET",
            extra_attrs={"proxy.method": "GET"},
        ) as span:
            span.set_attribute("proxy.status_code", 200)

    logger.info.assert_called_once_with("[Proxy] GET https://example.com/a?<redacted>")
    (finished,) = exporter.get_finished_spans()
    assert finished.name == "proxy_request"
    assert finished.attributes["proxy.target_url"] == "https://example.com/a?<redacted>"
    assert finished.attributes["proxy.method"] == "GET"
    assert finished.attributes["proxy.status_code"] == 200


def test_without_target_url():
    tracer, exporter = _tracer()
    with patch("app.utils.traced_requests.logger") as logger:
        with traced_request(tracer, "startup", None, "[Server] starting"):
            pass

    logger.info.assert_called_once_with("[Server] starting")
    (finished,) = exporter.get_finished_spans()
    assert "proxy.target_url" not in finished.attributes
