"""
chatstream - Delta Merger

Folds the deltas of one turn into a single accumulated Delta and turns a
terminal accumulator into a finalized Message.

Merging is monotonic:
- role is first-write-wins
- text, reasoning and tool call arguments only grow by appending
- a terminal status is never replaced by a non-terminal one
"""

from typing import Iterable, Optional

from ..core.models import (
    Delta,
    Message,
    Role,
    TextContent,
    ThinkingContent,
)
from ..observability.logging import StructuredLogger, get_logger
from .tool_calls import fragments_to_tool_calls, merge_fragments


def _concat(current: Optional[str], addition: Optional[str]) -> Optional[str]:
    if not addition:
        return current
    return (current or "") + addition


def merge(
    accumulator: Optional[Delta],
    next_delta: Delta,
    logger: Optional[StructuredLogger] = None,
) -> Delta:
    """
    Merge `next_delta` into `accumulator` and return the result.

    Neither argument is modified. Without an accumulator, `next_delta`
    becomes the accumulator as-is.
    """
    if accumulator is None:
        return next_delta

    role = accumulator.role or next_delta.role
    if accumulator.role and next_delta.role and accumulator.role != next_delta.role:
        # Providers are assumed self-consistent; the newer value wins
        (logger or get_logger(__name__)).debug(
            "Role changed within a turn",
            turn_index=accumulator.turn_index,
            previous_role=accumulator.role.value,
            role=next_delta.role.value,
        )
        role = next_delta.role

    status = next_delta.status if next_delta.status.is_terminal else accumulator.status

    return Delta(
        role=role,
        content=_concat(accumulator.content, next_delta.content),
        thinking=_concat(accumulator.thinking, next_delta.thinking),
        signature=next_delta.signature or accumulator.signature,
        tool_calls=merge_fragments(accumulator.tool_calls, next_delta.tool_calls),
        status=status,
        turn_index=accumulator.turn_index,
    )


def merge_deltas(
    deltas: Iterable[Delta],
    accumulator: Optional[Delta] = None,
    logger: Optional[StructuredLogger] = None,
) -> Optional[Delta]:
    """Fold a sequence of deltas, left to right."""
    for delta in deltas:
        accumulator = merge(accumulator, delta, logger=logger)
    return accumulator


def to_message(delta: Delta, logger: Optional[StructuredLogger] = None) -> Message:
    """
    Convert a terminal accumulator into a Message.

    Reasoning (when present) comes first in the content, followed by the
    text. Tool calls are ordered by index; a call whose arguments are not
    valid JSON is logged and kept as received.

    Raises:
        ValueError: the delta is not terminal
    """
    if not delta.status.is_terminal:
        raise ValueError(
            f"Cannot finalize turn {delta.turn_index} with status {delta.status.value}"
        )

    content = []
    if delta.thinking or delta.signature:
        content.append(ThinkingContent(text=delta.thinking or "", signature=delta.signature))
    if delta.content:
        content.append(TextContent(text=delta.content))

    message = Message(
        role=delta.role or Role.ASSISTANT,
        content=content,
        tool_calls=fragments_to_tool_calls(delta.tool_calls, logger=logger),
        status=delta.status,
        turn_index=delta.turn_index,
    )

    if message.role == Role.ASSISTANT and not message.content and not message.tool_calls:
        (logger or get_logger(__name__)).warning(
            "Finalized an empty assistant message",
            turn_index=delta.turn_index,
            status=delta.status.value,
        )

    return message


def content_to_string(delta: Optional[Delta]) -> Optional[str]:
    """Accumulated text of a delta, None when there is none."""
    if delta is None:
        return None
    return delta.content or None

