"""
chatstream - Streaming Module

Decoding of streamed (and batch) provider responses:
- Chunk reassembly across network reads
- Wire format decoding (event/data blocks, data lines)
- Normalization of provider payloads into canonical deltas
- Delta merging and message finalization
"""

from .buffer import ChunkBuffer, WireFormat, split_units
from .decoders import (
    IGNORE,
    Complete,
    DataLineDecoder,
    EventDataDecoder,
    Ignore,
    Incomplete,
    decoder_for,
    is_complete_unit,
)
from .normalizer import (
    FINISH_REASON_STATUS,
    DeltaNormalizer,
    NormalizedPayload,
    normalize,
    resolve_status,
)
from .tool_calls import ToolCallAccumulator, merge_fragments
from .merger import content_to_string, merge, merge_deltas, to_message
from .session import (
    PROVIDER_WIRE_FORMATS,
    EventKind,
    SessionState,
    StreamEvent,
    StreamSession,
    decode_response,
)

__all__ = [
    # Buffer
    "ChunkBuffer",
    "WireFormat",
    "split_units",
    # Decoders
    "IGNORE",
    "Complete",
    "DataLineDecoder",
    "EventDataDecoder",
    "Ignore",
    "Incomplete",
    "decoder_for",
    "is_complete_unit",
    # Normalizer
    "FINISH_REASON_STATUS",
    "DeltaNormalizer",
    "NormalizedPayload",
    "normalize",
    "resolve_status",
    # Tool calls
    "ToolCallAccumulator",
    "merge_fragments",
    # Merger
    "content_to_string",
    "merge",
    "merge_deltas",
    "to_message",
    # Session
    "PROVIDER_WIRE_FORMATS",
    "EventKind",
    "SessionState",
    "StreamEvent",
    "StreamSession",
    "decode_response",
]
