"""
chatstream - Tool Call Streaming

Accumulates tool/function calls that stream in pieces.

Tool calls arrive incrementally:
1. A fragment with the call ID and function name
2. Fragments carrying partial argument JSON
3. The turn's terminal status ends the call

Arguments stay an opaque string until the caller asks for them parsed.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..core.models import ToolCall, ToolCallFragment
from ..observability.logging import StructuredLogger, get_logger


def generate_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class ToolCallAccumulator:
    """
    Accumulates the fragments of one tool call, keyed by index.

    - id and name are taken from the first fragment that carries them
    - argument pieces are appended in arrival order
    """
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_buffer: str = ""

    @classmethod
    def from_fragment(cls, fragment: ToolCallFragment) -> "ToolCallAccumulator":
        return cls(
            index=fragment.index,
            id=fragment.id,
            name=fragment.name,
            arguments_buffer=fragment.arguments,
        )

    def update(self, fragment: ToolCallFragment):
        """Fold in the next fragment for this index."""
        if fragment.id and not self.id:
            self.id = fragment.id
        if fragment.name and not self.name:
            self.name = fragment.name
        if fragment.arguments:
            self.arguments_buffer += fragment.arguments

    def to_fragment(self) -> ToolCallFragment:
        return ToolCallFragment(
            index=self.index,
            id=self.id,
            name=self.name,
            arguments=self.arguments_buffer,
        )

    def to_tool_call(self) -> ToolCall:
        """Build the finished call. A call that never received an ID gets one."""
        return ToolCall(
            id=self.id or generate_call_id(),
            name=self.name or "",
            arguments=self.arguments_buffer,
            index=self.index,
        )

    def validate(self) -> tuple:
        """
        Validate the accumulated tool call.

        Returns:
            (is_valid, error_message)
        """
        if not self.name:
            return False, "Missing function name"

        if self.arguments_buffer.strip():
            try:
                json.loads(self.arguments_buffer)
            except json.JSONDecodeError as e:
                return False, f"Invalid arguments JSON: {e}"

        return True, None


def merge_fragments(
    current: Mapping[int, ToolCallFragment],
    incoming: Mapping[int, ToolCallFragment],
) -> Dict[int, ToolCallFragment]:
    """
    Merge two index-keyed fragment maps into a new one.

    Neither input is modified.
    """
    merged: Dict[int, ToolCallFragment] = dict(current)
    for index, fragment in incoming.items():
        existing = merged.get(index)
        if existing is None:
            merged[index] = fragment
            continue
        accumulator = ToolCallAccumulator.from_fragment(existing)
        accumulator.update(fragment)
        merged[index] = accumulator.to_fragment()
    return merged


def fragments_to_tool_calls(
    fragments: Mapping[int, ToolCallFragment],
    logger: Optional[StructuredLogger] = None,
) -> List[ToolCall]:
    """
    Finished tool calls, ordered by index.

    Each call is validated once it is complete. Invalid calls are logged
    and still returned; their arguments stay the raw text the provider
    sent.
    """
    tool_calls = []
    for index in sorted(fragments):
        accumulator = ToolCallAccumulator.from_fragment(fragments[index])
        is_valid, error = accumulator.validate()
        if not is_valid:
            (logger or get_logger(__name__)).warning(
                "Finalized an invalid tool call",
                tool_call_index=index,
                tool_name=accumulator.name,
                error=error,
            )
        tool_calls.append(accumulator.to_tool_call())
    return tool_calls


# ============================================================
# Provider fragment parsing
# ============================================================

def argument_text(value: Any) -> str:
    """Streamed arguments are concatenated, so only strings are accepted."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"Expected argument text, got {type(value).__name__}")
    return value


def fragment_from_openai(data: Mapping[str, Any], default_index: int = 0) -> ToolCallFragment:
    """
    Parse an OpenAI tool call delta.

    {"index": 0, "id": "call_...", "type": "function",
     "function": {"name": "...", "arguments": "{\\"lo"}}
    """
    function = data.get("function") or {}
    index = data.get("index", default_index)
    if isinstance(index, bool) or not isinstance(index, int):
        raise TypeError(f"Expected an integer tool call index, got {index!r}")
    return ToolCallFragment(
        index=index,
        id=data.get("id"),
        name=function.get("name"),
        arguments=argument_text(function.get("arguments")),
    )


def fragment_from_openai_function_call(data: Mapping[str, Any]) -> ToolCallFragment:
    """Legacy `function_call` deltas describe a single call at index 0."""
    return ToolCallFragment(
        index=0,
        name=data.get("name"),
        arguments=argument_text(data.get("arguments")),
    )


def fragment_from_anthropic_block(block: Mapping[str, Any], index: int) -> ToolCallFragment:
    """
    Parse an Anthropic `tool_use` content block.

    Streaming blocks start with an empty `input`; the arguments follow as
    input_json_delta events. Batch blocks carry the whole `input` object.
    """
    tool_input = block.get("input")
    return ToolCallFragment(
        index=index,
        id=block.get("id"),
        name=block.get("name"),
        arguments=json.dumps(tool_input) if tool_input else "",
    )


def fragment_from_google(part: Mapping[str, Any], index: int) -> ToolCallFragment:
    """
    Parse a Google Gemini `functionCall` part.

    Gemini sends each call whole: {functionCall: {name, args}}. It has no
    call ID, so one is generated.
    """
    fc = part.get("functionCall") or {}
    return ToolCallFragment(
        index=index,
        id=fc.get("id") or generate_call_id(),
        name=fc.get("name"),
        arguments=json.dumps(fc.get("args") or {}),
    )
