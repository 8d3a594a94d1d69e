"""
chatstream - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Smoke test handling (skip with SKIP_SMOKE=1)
- Provider payload fixtures and recorded streams
- Isolated metrics registry and a collecting sink
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from chatstream.core.config import StreamSettings, reset_settings
from chatstream.observability.metrics import StreamMetrics
from chatstream.observability.tracing import TracingManager
from chatstream.streaming.session import EventKind, StreamEvent, StreamSession


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))
SKIP_SMOKE = _is_truthy(os.getenv("SKIP_SMOKE"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )
    config.addinivalue_line(
        "markers",
        "smoke: mark test as smoke test (skip with SKIP_SMOKE=1)"
    )


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to handle integration and smoke tests.

    - Integration tests: Skip unless RUN_INTEGRATION=1
    - Smoke tests: Skip if SKIP_SMOKE=1
    """
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    skip_smoke = pytest.mark.skip(
        reason="Smoke test skipped - SKIP_SMOKE=1"
    )

    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)

        if "smoke" in item.keywords and SKIP_SMOKE:
            item.add_marker(skip_smoke)


# ============================================================
# Wire format helpers
# ============================================================

def data_line(payload: Dict[str, Any]) -> str:
    """One `data:` event as sent by OpenAI, Mistral and Google."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def event_block(payload: Dict[str, Any]) -> str:
    """One `event:`/`data:` block as sent by Anthropic."""
    return f"event: {payload['type']}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


# ============================================================
# Provider Payloads
# ============================================================

@pytest.fixture
def mock_openai_response():
    """Standard mock OpenAI chat response."""
    return {
        "id": "chatcmpl-test123",
        "object": "chat.completion",
        "created": 1234567890,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": "Hello! I'm a mock response."
                },
                "finish_reason": "stop"
            }
        ],
        "usage": {
            "prompt_tokens": 10,
            "completion_tokens": 8,
            "total_tokens": 18
        }
    }


@pytest.fixture
def mock_anthropic_response():
    """Standard mock Anthropic response."""
    return {
        "id": "msg-test123",
        "type": "message",
        "role": "assistant",
        "content": [
            {
                "type": "text",
                "text": "Hello! I'm a mock Claude response."
            }
        ],
        "model": "claude-3-5-sonnet-20241022",
        "stop_reason": "end_turn",
        "usage": {
            "input_tokens": 10,
            "output_tokens": 8
        }
    }


@pytest.fixture
def mock_google_response():
    """Standard mock Gemini response."""
    return {
        "candidates": [
            {
                "content": {
                    "role": "model",
                    "parts": [{"text": "Hello! I'm a mock Gemini response."}]
                },
                "finishReason": "STOP",
                "index": 0
            }
        ],
        "usageMetadata": {
            "promptTokenCount": 10,
            "candidatesTokenCount": 8,
            "totalTokenCount": 18
        }
    }


@pytest.fixture
def mock_error_429():
    """Mock 429 rate limit response."""
    return {
        "error": {
            "code": "rate_limit_exceeded",
            "message": "Rate limit exceeded",
            "type": "rate_limit_error"
        }
    }


# ============================================================
# Recorded Streams
# ============================================================

ANTHROPIC_STREAM_EVENTS: List[Dict[str, Any]] = [
    {
        "type": "message_start",
        "message": {
            "id": "msg_01",
            "type": "message",
            "role": "assistant",
            "content": [],
            "model": "claude-3-5-sonnet-20241022",
            "stop_reason": None,
            "usage": {"input_tokens": 25, "output_tokens": 1},
        },
    },
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "ping"},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Héllo, "}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "wörld ✓"}},
    {"type": "content_block_stop", "index": 0},
    {
        "type": "content_block_start",
        "index": 1,
        "content_block": {"type": "tool_use", "id": "toolu_01", "name": "get_weather", "input": {}},
    },
    {
        "type": "content_block_delta",
        "index": 1,
        "delta": {"type": "input_json_delta", "partial_json": "{\"location\": "},
    },
    {
        "type": "content_block_delta",
        "index": 1,
        "delta": {"type": "input_json_delta", "partial_json": "\"Paris\"}"},
    },
    {"type": "content_block_stop", "index": 1},
    {
        "type": "message_delta",
        "delta": {"type": "message_delta", "stop_reason": "tool_use", "stop_sequence": None},
        "usage": {"output_tokens": 42},
    },
    {"type": "message_stop"},
]


OPENAI_STREAM_CHUNKS: List[Dict[str, Any]] = [
    {"choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}, "finish_reason": None}]},
    {"choices": [{"index": 0, "delta": {"content": "Hello"}, "finish_reason": None}]},
    {"choices": [{"index": 0, "delta": {"content": " thère"}, "finish_reason": None}]},
    {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
    {"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 3, "total_tokens": 12}},
]


@pytest.fixture
def anthropic_stream() -> str:
    """Anthropic stream with text, a ping and one tool call."""
    return "".join(event_block(event) for event in ANTHROPIC_STREAM_EVENTS)


@pytest.fixture
def openai_stream() -> str:
    """OpenAI stream ending with a usage chunk and the [DONE] sentinel."""
    return "".join(data_line(chunk) for chunk in OPENAI_STREAM_CHUNKS) + "data: [DONE]\n\n"


# ============================================================
# Sessions
# ============================================================

class EventCollector:
    """Sink that records every event it receives."""

    def __init__(self):
        self.events: List[StreamEvent] = []

    def __call__(self, event: StreamEvent):
        self.events.append(event)

    @property
    def kinds(self) -> List[EventKind]:
        return [event.kind for event in self.events]

    @property
    def deltas(self):
        return [event.delta for event in self.events if event.kind == EventKind.DELTA]

    @property
    def messages(self):
        return [event.message for event in self.events if event.kind == EventKind.MESSAGE]


@pytest.fixture
def event_sink() -> EventCollector:
    return EventCollector()


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    """Fresh registry so metric values start at zero."""
    return CollectorRegistry()


@pytest.fixture
def stream_metrics(metrics_registry) -> StreamMetrics:
    return StreamMetrics(metrics_registry)


@pytest.fixture
def test_settings() -> StreamSettings:
    return StreamSettings(tracing_enabled=False)


@pytest.fixture
def make_session(event_sink, stream_metrics, test_settings):
    """
    Factory for sessions wired to the collecting sink and isolated metrics.

    Usage:
        def test_something(make_session):
            session = make_session("openai")
    """
    def _make(provider: str, **kwargs) -> StreamSession:
        kwargs.setdefault("settings", test_settings)
        kwargs.setdefault("metrics", stream_metrics)
        sink = kwargs.pop("sink", event_sink)
        return StreamSession(provider, sink, **kwargs)

    return _make


# ============================================================
# Global State
# ============================================================

@pytest.fixture(autouse=True)
def reset_global_state():
    """Drop cached settings and tracing between tests."""
    reset_settings()
    yield
    reset_settings()
    TracingManager.reset_instance()


@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    yield
