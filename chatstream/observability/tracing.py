"""
chatstream - OpenTelemetry Tracing

Spans around stream session consumption.

Usage:
    from chatstream.observability.tracing import setup_tracing, session_span

    # Setup at startup (optional: without it spans are no-ops)
    setup_tracing(service_name="my-service")

    with session_span("chatstream.consume", provider="openai") as span:
        span.set_attribute("chatstream.messages", 1)
"""

import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Status, StatusCode

from .. import __version__

INSTRUMENTATION_NAME = "chatstream"


class TracingManager:
    """
    Owns the SDK tracer provider used for session spans.

    Singleton pattern for global access.
    """

    _instance: Optional["TracingManager"] = None

    def __init__(
        self,
        service_name: str = "chatstream",
        service_version: str = __version__,
        console_export: bool = False,
        exporter: Optional[SpanExporter] = None,
        set_global: bool = True,
    ):
        """
        Initialize tracing.

        Args:
            service_name: Name of the service
            service_version: Version of the service
            console_export: Export spans to console (for debugging)
            exporter: Extra span exporter (e.g. an in-memory exporter in tests)
            set_global: Install the provider as the global tracer provider
        """
        self.service_name = service_name
        self.service_version = service_version

        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if console_export:
            self.provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        if exporter is not None:
            self.provider.add_span_processor(SimpleSpanProcessor(exporter))

        if set_global:
            trace.set_tracer_provider(self.provider)

        self.tracer = self.provider.get_tracer(INSTRUMENTATION_NAME, __version__)

    @classmethod
    def reset_instance(cls):
        """Reset singleton (for testing)."""
        cls._instance = None

    def shutdown(self):
        """Shutdown the tracer provider."""
        self.provider.shutdown()


def setup_tracing(
    service_name: str = "chatstream",
    console_export: bool = False,
    exporter: Optional[SpanExporter] = None,
    set_global: bool = True,
) -> TracingManager:
    """
    Setup tracing for session spans.

    OTEL_CONSOLE_EXPORT=true enables console export.
    """
    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    manager = TracingManager(
        service_name=service_name,
        console_export=console_export,
        exporter=exporter,
        set_global=set_global,
    )
    TracingManager._instance = manager
    return manager


def get_tracer() -> trace.Tracer:
    """
    Get the tracer for session spans.

    Falls back to the globally configured provider, which is a no-op until
    something installs one.
    """
    if TracingManager._instance is not None:
        return TracingManager._instance.tracer
    return trace.get_tracer(INSTRUMENTATION_NAME, __version__)


@contextmanager
def session_span(
    name: str,
    tracer: Optional[trace.Tracer] = None,
    **attributes: Any,
) -> Iterator[trace.Span]:
    """
    Run a block inside a span.

    Attribute names are prefixed with `chatstream.`; None values are
    skipped. Exceptions are recorded on the span and re-raised.
    """
    span_attributes: Dict[str, Any] = {
        f"chatstream.{key}": value
        for key, value in attributes.items()
        if value is not None
    }
    tracer = tracer or get_tracer()
    with tracer.start_as_current_span(
        name,
        attributes=span_attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            error = getattr(e, "error", None)
            if error is not None:
                span.set_attribute("chatstream.error.code", error.code)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
