"""
chatstream - Streaming LLM Response Decoding

Turns fragmented provider response bodies (OpenAI, Anthropic, Google,
Mistral) into one canonical delta stream and finalized messages.
"""

__version__ = "1.0.0"
__author__ = "chatstream"

from .core.models import (
    ContentPart,
    ContentType,
    Delta,
    Message,
    Provider,
    Role,
    Status,
    TokenUsage,
    ToolCall,
    ToolCallFragment,
    ToolResult,
)
from .core.errors import (
    ChatStreamError,
    DecodeError,
    ProtocolViolationError,
    ProviderError,
    SessionClosedError,
    SinkError,
    TransportError,
)
from .streaming.session import (
    EventKind,
    SessionState,
    StreamEvent,
    StreamSession,
    decode_response,
)

__all__ = [
    "ContentPart",
    "ContentType",
    "Delta",
    "Message",
    "Provider",
    "Role",
    "Status",
    "TokenUsage",
    "ToolCall",
    "ToolCallFragment",
    "ToolResult",
    "ChatStreamError",
    "DecodeError",
    "ProtocolViolationError",
    "ProviderError",
    "SessionClosedError",
    "SinkError",
    "TransportError",
    "EventKind",
    "SessionState",
    "StreamEvent",
    "StreamSession",
    "decode_response",
]
