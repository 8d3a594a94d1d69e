"""
chatstream - Core Data Models

Canonical data models shared by every provider: the incremental Delta
produced while a response streams in, and the finalized Message it folds
into.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union


# ============================================================
# Enums
# ============================================================

class Provider(str, Enum):
    """Supported AI providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    MISTRAL = "mistral"


class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Status(str, Enum):
    """
    Completion status of a turn.

    INCOMPLETE is the only non-terminal value; every other status ends
    accumulation for the owning turn index.
    """
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"
    LENGTH = "length"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not Status.INCOMPLETE


class ContentType(str, Enum):
    """Content part types."""
    TEXT = "text"
    IMAGE = "image"
    IMAGE_URL = "image_url"
    FILE_URL = "file_url"
    THINKING = "thinking"


# ============================================================
# Content Parts (for multimodal)
# ============================================================

@dataclass
class TextContent:
    """Text content part."""
    type: Literal["text"] = "text"
    text: str = ""


@dataclass
class ImageContent:
    """Inline image content (raw bytes or base64 string)."""
    type: Literal["image"] = "image"
    data: Union[bytes, str] = b""
    media_type: str = "image/png"


@dataclass
class ImageUrlContent:
    """Image referenced by URL."""
    type: Literal["image_url"] = "image_url"
    url: str = ""
    media_type: Optional[str] = None


@dataclass
class FileUrlContent:
    """File referenced by URL."""
    type: Literal["file_url"] = "file_url"
    url: str = ""
    media_type: Optional[str] = None


@dataclass
class ThinkingContent:
    """Model reasoning returned alongside the answer."""
    type: Literal["thinking"] = "thinking"
    text: str = ""
    signature: Optional[str] = None


ContentPart = Union[
    TextContent,
    ImageContent,
    ImageUrlContent,
    FileUrlContent,
    ThinkingContent,
]


def content_to_parts(content: Union[str, List[ContentPart], None]) -> List[ContentPart]:
    """Expand the plain-string shorthand into a single text part."""
    if content is None:
        return []
    if isinstance(content, str):
        return [TextContent(text=content)] if content else []
    return list(content)


# ============================================================
# Tool Calling
# ============================================================

@dataclass
class ToolCall:
    """A complete tool invocation requested by the model."""
    id: str
    name: str
    arguments: str = ""  # raw JSON string, exactly as received
    index: int = 0

    def parsed_arguments(self) -> Any:
        """Decode the argument string. Empty arguments decode to {}."""
        if not self.arguments.strip():
            return {}
        return json.loads(self.arguments)


@dataclass
class ToolResult:
    """Result of executing a tool, reported back to the model."""
    name: str
    content: List[ContentPart] = field(default_factory=list)
    tool_call_id: str = ""


@dataclass
class ToolCallFragment:
    """
    Partial tool call carried by a single Delta.

    Only the fields present in the provider fragment are set; arguments is
    an opaque partial string to be concatenated.
    """
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


# ============================================================
# Usage
# ============================================================

@dataclass
class TokenUsage:
    """Token counts reported by a provider."""
    input: Optional[int] = None
    output: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return (self.input or 0) + (self.output or 0)

    def update(self, other: TokenUsage) -> TokenUsage:
        """
        Fold a newer usage report into this one.

        Providers report running totals, so a field present in `other`
        replaces the current value instead of being added to it.
        """
        return TokenUsage(
            input=other.input if other.input is not None else self.input,
            output=other.output if other.output is not None else self.output,
            raw={**self.raw, **other.raw},
        )


# ============================================================
# Deltas and Messages
# ============================================================

@dataclass
class Delta:
    """
    Incremental fragment of one in-progress response turn.

    A Delta is never corrected after the fact: later deltas for the same
    turn only append text/arguments or repeat an already-set value.
    """
    role: Optional[Role] = None
    content: Optional[str] = None
    thinking: Optional[str] = None
    signature: Optional[str] = None
    tool_calls: Dict[int, ToolCallFragment] = field(default_factory=dict)
    status: Status = Status.INCOMPLETE
    turn_index: int = 0

    @property
    def has_content(self) -> bool:
        """True once the delta carries any text, reasoning or tool call."""
        return bool(self.content or self.thinking or self.tool_calls)


@dataclass
class Message:
    """
    Finalized message.

    `content` accepts a plain string as shorthand for a single text part;
    it is always stored as a list of content parts.
    """
    role: Role
    content: List[ContentPart] = field(default_factory=list)
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    status: Status = Status.COMPLETE
    turn_index: int = 0

    def __post_init__(self):
        self.content = content_to_parts(self.content)

    @property
    def text(self) -> str:
        """Concatenated text parts."""
        return "".join(
            part.text for part in self.content if isinstance(part, TextContent)
        )

    @property
    def thinking(self) -> str:
        """Concatenated reasoning parts."""
        return "".join(
            part.text for part in self.content if isinstance(part, ThinkingContent)
        )

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: Union[str, List[ContentPart]]) -> Message:
        """Create a user message."""
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls,
        content: Union[str, List[ContentPart], None] = None,
        tool_calls: Optional[List[ToolCall]] = None
    ) -> Message:
        """Create an assistant message."""
        return cls(
            role=Role.ASSISTANT,
            content=content,
            tool_calls=tool_calls or [],
        )

    @classmethod
    def tool(cls, results: List[ToolResult]) -> Message:
        """Create a tool result message."""
        return cls(role=Role.TOOL, tool_results=results)


# ============================================================
# Serialization
# ============================================================

def content_part_to_dict(part: ContentPart) -> Dict[str, Any]:
    """Convert a content part to a JSON-friendly dictionary."""
    if isinstance(part, TextContent):
        return {"type": "text", "text": part.text}
    if isinstance(part, ThinkingContent):
        result: Dict[str, Any] = {"type": "thinking", "text": part.text}
        if part.signature:
            result["signature"] = part.signature
        return result
    if isinstance(part, ImageContent):
        data = part.data
        if isinstance(data, bytes):
            data = base64.b64encode(data).decode("ascii")
        return {"type": "image", "data": data, "media_type": part.media_type}
    return {"type": part.type, "url": part.url, "media_type": part.media_type}


def message_to_dict(msg: Message) -> Dict[str, Any]:
    """Convert a Message to a JSON-friendly dictionary."""
    result: Dict[str, Any] = {
        "role": msg.role.value,
        "content": [content_part_to_dict(part) for part in msg.content],
        "status": msg.status.value,
        "index": msg.turn_index,
    }

    if msg.tool_calls:
        result["tool_calls"] = [
            {
                "id": tc.id,
                "name": tc.name,
                "arguments": tc.arguments,
                "index": tc.index,
            }
            for tc in msg.tool_calls
        ]

    if msg.tool_results:
        result["tool_results"] = [
            {
                "name": tr.name,
                "tool_call_id": tr.tool_call_id,
                "content": [content_part_to_dict(part) for part in tr.content],
            }
            for tr in msg.tool_results
        ]

    return result
