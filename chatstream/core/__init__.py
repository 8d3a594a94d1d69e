"""
chatstream Core Module

Canonical data models, error taxonomy and settings.
"""

from .models import (
    # Enums
    Provider,
    Role,
    Status,
    ContentType,

    # Content
    ContentPart,
    TextContent,
    ImageContent,
    ImageUrlContent,
    FileUrlContent,
    ThinkingContent,

    # Tool calling
    ToolCall,
    ToolCallFragment,
    ToolResult,

    # Streaming
    Delta,
    Message,
    TokenUsage,

    # Serialization
    message_to_dict,
)

from .errors import (
    ErrorKind,
    ErrorDetails,
    ChatStreamError,
    DecodeError,
    ProviderError,
    TransportError,
    ProtocolViolationError,
    SessionClosedError,
    SinkError,
    classify_transport_error,
    is_error_payload,
    is_retryable_before_content,
)

from .config import StreamSettings, get_settings, reset_settings

__all__ = [
    "Provider",
    "Role",
    "Status",
    "ContentType",
    "ContentPart",
    "TextContent",
    "ImageContent",
    "ImageUrlContent",
    "FileUrlContent",
    "ThinkingContent",
    "ToolCall",
    "ToolCallFragment",
    "ToolResult",
    "Delta",
    "Message",
    "TokenUsage",
    "message_to_dict",
    "ErrorKind",
    "ErrorDetails",
    "ChatStreamError",
    "DecodeError",
    "ProviderError",
    "TransportError",
    "ProtocolViolationError",
    "SessionClosedError",
    "SinkError",
    "classify_transport_error",
    "is_error_payload",
    "is_retryable_before_content",
    "StreamSettings",
    "get_settings",
    "reset_settings",
]
