"""
chatstream - Wire Format Decoders

Turn one complete unit from the ChunkBuffer into a decoded JSON payload.

Every decoder returns one of:
- Complete(payload):  the unit decoded
- Incomplete(raw):    the JSON body did not parse; the unit is presumed
                      truncated and may complete once more bytes arrive
- Ignore:             framing without content (comments, sentinels, ...)

Decoders hold no state; the same instance serves every session.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .buffer import WireFormat


# ============================================================
# Decode Results
# ============================================================

@dataclass(frozen=True)
class Complete:
    """A fully decoded unit."""
    payload: Any
    event: Optional[str] = None


@dataclass(frozen=True)
class Incomplete:
    """A unit whose JSON body did not decode (yet)."""
    raw: str


@dataclass(frozen=True)
class Ignore:
    """
    A unit that carries nothing to normalize.

    `reason` is set when the unit was discarded because its framing was
    malformed, as opposed to ordinary framing content.
    """
    reason: Optional[str] = None


IGNORE = Ignore()

DecodeResult = Union[Complete, Incomplete, Ignore]

DONE_SENTINEL = "[DONE]"


def _decode_json(raw_unit: str, data: str, event: Optional[str] = None) -> DecodeResult:
    try:
        return Complete(payload=json.loads(data), event=event)
    except json.JSONDecodeError:
        return Incomplete(raw=raw_unit)


# ============================================================
# Decoders
# ============================================================

class EventDataDecoder:
    """
    Decoder for `event: <name>` / `data: <json>` blocks.

    Anthropic style:
        event: content_block_delta
        data: {"type": "content_block_delta", ...}

    The event line is optional and its name may be empty. Several data
    lines are joined with newlines.
    """

    wire_format = WireFormat.EVENT_DATA

    _BLOCK_PATTERN = re.compile(
        r"\A(?:event:[ \t]*(?P<event>[^\n]*?)[ \t]*\n)?"
        r"(?P<data>data:[^\n]*(?:\ndata:[^\n]*)*)\s*\Z"
    )

    def decode_unit(self, raw_unit: str) -> DecodeResult:
        match = self._BLOCK_PATTERN.match(raw_unit.strip())
        if match is None:
            return Ignore(reason="malformed_framing")

        data = "\n".join(
            _strip_field(line, "data:") for line in match.group("data").split("\n")
        )
        event = match.group("event") or None
        return _decode_json(raw_unit, data, event)


class DataLineDecoder:
    """
    Decoder for bare `data: <json>` lines, terminated by `data: [DONE]`.

    Blank lines, SSE comments (`: keep-alive`) and any other field lines
    are ignored.
    """

    wire_format = WireFormat.DATA_LINE

    def decode_unit(self, raw_unit: str) -> DecodeResult:
        line = raw_unit.strip()
        if not line.startswith("data:"):
            return IGNORE

        data = _strip_field(line, "data:").strip()
        if not data or data == DONE_SENTINEL:
            return IGNORE

        return _decode_json(raw_unit, data)


def _strip_field(line: str, prefix: str) -> str:
    """Remove a field name and the single optional space after it."""
    value = line[len(prefix):]
    return value[1:] if value.startswith(" ") else value


FormatDecoder = Union[EventDataDecoder, DataLineDecoder]

DECODERS: Dict[WireFormat, FormatDecoder] = {
    WireFormat.EVENT_DATA: EventDataDecoder(),
    WireFormat.DATA_LINE: DataLineDecoder(),
}


def decoder_for(wire_format: WireFormat) -> FormatDecoder:
    """Get the decoder for a wire format."""
    return DECODERS[WireFormat(wire_format)]


def is_done_sentinel(unit: str) -> bool:
    """Check for the `data: [DONE]` line that ends a data-line stream."""
    line = unit.strip()
    return line.startswith("data:") and _strip_field(line, "data:").strip() == DONE_SENTINEL


def is_complete_unit(decoder: FormatDecoder, unit: str) -> bool:
    """
    Check whether an unterminated tail already decodes on its own.

    The end-of-stream sentinel is complete too, so it never waits in the
    buffer for a separator that may not come.
    """
    if decoder.wire_format == WireFormat.DATA_LINE and is_done_sentinel(unit):
        return True
    return isinstance(decoder.decode_unit(unit), Complete)
