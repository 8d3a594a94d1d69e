"""
chatstream - Chunk Buffer

Reassembles logical units from response body chunks.

Network reads rarely line up with protocol framing: a single unit can be
split across many reads (even in the middle of a multi-byte character or a
separator), and one read can carry several units. The buffer keeps the
unterminated tail between reads and hands out only complete units.

Two framings are supported:
- EVENT_DATA: `event:`/`data:` blocks separated by a blank line
- DATA_LINE:  one `data: <json>` per line
"""

import codecs
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

# Predicate telling whether an unterminated tail is already a complete unit
CompletePredicate = Callable[[str], bool]


class WireFormat(str, Enum):
    """Framing used by a provider's streaming response body."""
    EVENT_DATA = "event_data"
    DATA_LINE = "data_line"

    @property
    def separator(self) -> str:
        return "\n\n" if self is WireFormat.EVENT_DATA else "\n"


def split_units(
    leftover: str,
    text: str,
    separator: str,
    is_complete: Optional[CompletePredicate] = None,
) -> Tuple[List[str], str]:
    """
    Split `leftover + text` into complete units and a new leftover.

    Every segment before the last one is terminated by the separator and
    therefore complete. The last segment is also returned as a unit when
    `is_complete` accepts it, otherwise it becomes the new leftover.

    CRLF line endings are normalized first. Empty and whitespace-only
    segments are dropped and units are stripped, so where a chunk boundary
    falls never changes the text of a unit.

    Returns:
        (units, new_leftover)
    """
    combined = (leftover + text).replace("\r\n", "\n")
    segments = combined.split(separator)
    tail = segments.pop()

    units = [segment.strip() for segment in segments if segment.strip()]

    stripped_tail = tail.strip()
    if not stripped_tail:
        # Keep trailing newlines so a separator split across reads is seen
        return units, tail if separator.startswith(tail) else ""

    if is_complete is not None and is_complete(stripped_tail):
        units.append(stripped_tail)
        return units, ""

    return units, tail


class ChunkBuffer:
    """
    Stateful buffer for one response body.

    Bytes are decoded incrementally as UTF-8, so a character split across
    reads is reassembled instead of being replaced.

    A unit that turned out to be truncated can be handed back with
    push_back(). It is joined with the next unit when the join completes,
    and otherwise returned again on its own.
    """

    def __init__(
        self,
        wire_format: WireFormat,
        is_complete: Optional[CompletePredicate] = None,
    ):
        self.wire_format = wire_format
        self.separator = wire_format.separator
        self._is_complete = is_complete
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._leftover = ""
        self._carry: Optional[str] = None

    @property
    def pending(self) -> str:
        """Unterminated text waiting for more bytes."""
        return self._leftover

    @property
    def has_pending(self) -> bool:
        return bool(self._leftover.strip()) or self._carry is not None

    def feed(self, data: Union[bytes, str]) -> List[str]:
        """
        Add a chunk and return every unit it completes, in order.

        Args:
            data: Raw bytes from the response body (or already decoded text)
        """
        if isinstance(data, bytes):
            text = self._decoder.decode(data)
        else:
            text = data

        units, self._leftover = split_units(
            self._leftover, text, self.separator, self._tail_is_complete
        )
        return self._attach_carry(units)

    def push_back(self, unit: str):
        """Re-present a truncated unit so it can be completed by later bytes."""
        self._carry = unit if self._carry is None else self._carry + unit

    def flush(self) -> List[str]:
        """
        End of body: return whatever is left as final units and reset.

        The remaining text may still be truncated; the caller decides what
        to do with it.
        """
        remainder = self._leftover + self._decoder.decode(b"", final=True)
        self._leftover = ""

        units = [remainder.strip()] if remainder.strip() else []
        if self._carry is not None and not units:
            carry, self._carry = self._carry, None
            return [carry]
        return self._attach_carry(units)

    def _tail_is_complete(self, tail: str) -> bool:
        if self._is_complete is None:
            return False
        if self._is_complete(tail):
            return True
        return self._carry is not None and self._is_complete(self._carry + tail)

    def _attach_carry(self, units: List[str]) -> List[str]:
        """Join a pushed-back unit with the first new unit when that completes it."""
        if self._carry is None or not units:
            return units

        carry, self._carry = self._carry, None
        joined = carry + units[0]
        if self._is_complete is not None and self._is_complete(joined):
            return [joined] + units[1:]
        return [carry] + units
