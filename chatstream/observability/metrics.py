"""
chatstream - Prometheus Metrics

Stream decoding metrics with the Prometheus client library.

Metrics exposed:
- chatstream_units_total: Counter of framed units by decode result
- chatstream_deltas_total: Counter of normalized deltas
- chatstream_messages_total: Counter of finalized messages by status
- chatstream_decode_errors_total: Counter of malformed units dropped
- chatstream_errors_total: Counter of terminal session errors by kind
- chatstream_protocol_anomalies_total: Counter of protocol anomalies
- chatstream_time_to_first_delta_seconds: Histogram of first-delta latency
- chatstream_active_sessions: Gauge of sessions currently open

Usage:
    from chatstream.observability.metrics import get_metrics, render_metrics

    metrics = get_metrics()
    metrics.record_unit(provider="openai", result="complete")

    body, content_type = render_metrics()
"""

from typing import Optional, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from .. import __version__


class StreamMetrics:
    """
    Central metrics collector for stream sessions.

    Thread-safe, singleton pattern for global access. Tests pass their own
    CollectorRegistry to stay isolated from the process registry.
    """

    _instance: Optional["StreamMetrics"] = None
    _registry_collectors: dict = {}

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        # Metrics can only be registered once per registry
        existing = StreamMetrics._registry_collectors.get(id(registry))
        if existing is not None and existing.registry is registry:
            self._copy_from(existing)
            return

        StreamMetrics._registry_collectors[id(registry)] = self

        self.info = Info(
            "chatstream",
            "chatstream decoder information",
            registry=registry,
        )
        self.info.info({"version": __version__})

        # result = complete/incomplete/ignored
        self.units_total = Counter(
            "chatstream_units_total",
            "Framed units handed to a decoder",
            labelnames=["provider", "result"],
            registry=registry,
        )

        self.deltas_total = Counter(
            "chatstream_deltas_total",
            "Normalized deltas delivered to the sink",
            labelnames=["provider"],
            registry=registry,
        )

        self.messages_total = Counter(
            "chatstream_messages_total",
            "Finalized messages",
            labelnames=["provider", "status"],
            registry=registry,
        )

        self.decode_errors_total = Counter(
            "chatstream_decode_errors_total",
            "Malformed units dropped",
            labelnames=["provider"],
            registry=registry,
        )

        # kind = provider_error/transport_error/protocol_error/sink_error
        self.errors_total = Counter(
            "chatstream_errors_total",
            "Terminal session errors",
            labelnames=["provider", "kind"],
            registry=registry,
        )

        self.protocol_anomalies_total = Counter(
            "chatstream_protocol_anomalies_total",
            "Protocol anomalies tolerated by the session",
            labelnames=["provider", "anomaly"],
            registry=registry,
        )

        # First deltas usually arrive within a few seconds
        self.time_to_first_delta = Histogram(
            "chatstream_time_to_first_delta_seconds",
            "Time from session start to the first delta",
            labelnames=["provider"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        self.active_sessions = Gauge(
            "chatstream_active_sessions",
            "Number of currently open stream sessions",
            labelnames=["provider"],
            registry=registry,
        )

    @classmethod
    def get_instance(cls) -> "StreamMetrics":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton (for testing)."""
        cls._instance = None
        cls._registry_collectors.clear()

    def _copy_from(self, other: "StreamMetrics"):
        """Copy metrics references from another collector."""
        self.info = other.info
        self.units_total = other.units_total
        self.deltas_total = other.deltas_total
        self.messages_total = other.messages_total
        self.decode_errors_total = other.decode_errors_total
        self.errors_total = other.errors_total
        self.protocol_anomalies_total = other.protocol_anomalies_total
        self.time_to_first_delta = other.time_to_first_delta
        self.active_sessions = other.active_sessions

    def record_unit(self, provider: str, result: str):
        """Record one framed unit and how it decoded."""
        self.units_total.labels(provider=provider, result=result).inc()

    def record_delta(self, provider: str):
        self.deltas_total.labels(provider=provider).inc()

    def record_message(self, provider: str, status: str):
        """Record a finalized message."""
        self.messages_total.labels(provider=provider, status=status).inc()

    def record_decode_error(self, provider: str):
        self.decode_errors_total.labels(provider=provider).inc()

    def record_error(self, provider: str, kind: str):
        """Record a terminal error."""
        self.errors_total.labels(provider=provider, kind=kind).inc()

    def record_protocol_anomaly(self, provider: str, anomaly: str):
        self.protocol_anomalies_total.labels(provider=provider, anomaly=anomaly).inc()

    def record_time_to_first_delta(self, provider: str, seconds: float):
        """Record time to first delta."""
        self.time_to_first_delta.labels(provider=provider).observe(seconds)

    def session_opened(self, provider: str):
        self.active_sessions.labels(provider=provider).inc()

    def session_closed(self, provider: str):
        self.active_sessions.labels(provider=provider).dec()


# Module-level functions for convenience
_metrics_instance: Optional[StreamMetrics] = None


def setup_metrics(registry: CollectorRegistry = REGISTRY) -> StreamMetrics:
    """
    Setup metrics collection.

    Safe to call multiple times - returns existing instance.
    """
    global _metrics_instance

    if _metrics_instance is not None and _metrics_instance.registry is registry:
        return _metrics_instance

    _metrics_instance = StreamMetrics(registry)
    StreamMetrics._instance = _metrics_instance
    return _metrics_instance


def get_metrics() -> StreamMetrics:
    """Get the metrics collector instance, creating it on first use."""
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = StreamMetrics.get_instance()
    return _metrics_instance


def render_metrics(registry: CollectorRegistry = REGISTRY) -> Tuple[bytes, str]:
    """
    Render the exposition format for a scrape.

    Returns:
        (body, content_type)
    """
    return generate_latest(registry), CONTENT_TYPE_LATEST
