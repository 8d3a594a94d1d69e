"""
chatstream - Observability Module

- Prometheus metrics for decoded units, deltas, messages and errors
- OpenTelemetry spans around session consumption
- Structured JSON logging with context injection

Usage:
    from chatstream.observability import (
        setup_logging,
        setup_tracing,
        get_logger,
        get_metrics,
    )

    setup_logging(level="INFO")
    logger = get_logger(__name__)
"""

from .metrics import (
    StreamMetrics,
    get_metrics,
    render_metrics,
    setup_metrics,
)
from .tracing import (
    TracingManager,
    get_tracer,
    session_span,
    setup_tracing,
)
from .logging import (
    JSONFormatter,
    LogContext,
    StructuredLogger,
    TimedOperation,
    get_logger,
    setup_logging,
)

__all__ = [
    # Metrics
    "StreamMetrics",
    "get_metrics",
    "render_metrics",
    "setup_metrics",
    # Tracing
    "TracingManager",
    "get_tracer",
    "session_span",
    "setup_tracing",
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredLogger",
    "TimedOperation",
    "get_logger",
    "setup_logging",
]
