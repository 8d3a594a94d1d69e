"""
chatstream - Stream Session

Orchestrates decoding of one response body:

    bytes -> ChunkBuffer -> decoder -> normalizer -> sink
                                                  -> merger -> Message

A session is created per request and lives as long as its response body
is read. It owns all of its state (buffer, one accumulator per turn index,
finalized messages); the sink, logger and metrics are passed in.

Usage:
    session = StreamSession("anthropic", sink=print_event)
    for chunk in response_chunks:
        session.feed(chunk)
    messages = session.close()

A session used as a context manager (or driven by consume()) counts as
active until it closes. Leaving the block without close() abandons it:
nothing is finalized and no error is reported.

End of body leniency:
    Some providers end the body without a terminal status for a turn.
    On close(), such a turn is finalized as COMPLETE if it accumulated any
    content and dropped if it did not. Both cases are logged as protocol
    anomalies. Set StreamSettings.end_of_body_leniency to False to drop
    every unterminated turn instead.
"""

import json
import time
import uuid
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, replace
from enum import Enum
from typing import (
    Any,
    AsyncIterable,
    Callable,
    Dict,
    Iterable,
    List,
    NoReturn,
    Optional,
    Set,
    Union,
)

from ..core.config import StreamSettings, get_settings
from ..core.errors import (
    ChatStreamError,
    DecodeError,
    ProtocolViolationError,
    ProviderError,
    SessionClosedError,
    SinkError,
    classify_transport_error,
)
from ..core.models import Delta, Message, Provider, Status, TokenUsage
from ..observability.logging import LogContext, StructuredLogger, TimedOperation, get_logger
from ..observability.metrics import StreamMetrics, get_metrics
from ..observability.tracing import session_span
from .buffer import ChunkBuffer, WireFormat
from .decoders import Ignore, Incomplete, decoder_for, is_complete_unit
from .merger import merge, to_message
from .normalizer import get_normalizer


# Wire format used by each provider's streaming endpoint
PROVIDER_WIRE_FORMATS: Dict[Provider, WireFormat] = {
    Provider.OPENAI: WireFormat.DATA_LINE,
    Provider.MISTRAL: WireFormat.DATA_LINE,
    Provider.GOOGLE: WireFormat.DATA_LINE,
    Provider.ANTHROPIC: WireFormat.EVENT_DATA,
}


class SessionState(str, Enum):
    """Session lifecycle."""
    OPEN = "open"
    CLOSED = "closed"


class EventKind(str, Enum):
    """Kinds of events delivered to the sink."""
    DELTA = "delta"
    MESSAGE = "message"


@dataclass(frozen=True)
class StreamEvent:
    """One sink invocation: a normalized delta or a finalized message."""
    kind: EventKind
    turn_index: int
    delta: Optional[Delta] = None
    message: Optional[Message] = None


Sink = Callable[[StreamEvent], None]


class StreamSession:
    """
    Decoding state for one response body.

    Not thread-safe: feed chunks from one task, in arrival order. The sink
    is called synchronously, so a slow sink slows down consumption.
    """

    def __init__(
        self,
        provider: Union[Provider, str],
        sink: Optional[Sink] = None,
        *,
        logger: Optional[StructuredLogger] = None,
        settings: Optional[StreamSettings] = None,
        metrics: Optional[StreamMetrics] = None,
        request_id: str = "",
    ):
        self.provider = Provider(provider)
        self.request_id = request_id
        self.session_id = f"sess_{uuid.uuid4().hex[:16]}"
        self.settings = settings or get_settings()
        self.wire_format = PROVIDER_WIRE_FORMATS[self.provider]

        log_fields = {"provider": self.provider.value, "session_id": self.session_id}
        if request_id:
            log_fields["request_id"] = request_id
        self._logger = (logger or get_logger(__name__)).bind(**log_fields)

        if metrics is None and self.settings.metrics_enabled:
            metrics = get_metrics()
        self._metrics = metrics

        self._sink = sink
        self._decoder = decoder_for(self.wire_format)
        self._normalizer = get_normalizer(self.provider)
        self._buffer = ChunkBuffer(
            self.wire_format,
            is_complete=lambda unit: is_complete_unit(self._decoder, unit),
        )

        self._accumulators: Dict[int, Delta] = {}
        self._closed_indices: Set[int] = set()
        self._messages: Dict[int, Message] = {}
        self._usage: Optional[TokenUsage] = None
        self._state = SessionState.OPEN
        self._started_at = time.perf_counter()
        self._first_delta_at: Optional[float] = None
        self._active = False

    # ============================================================
    # Properties
    # ============================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == SessionState.CLOSED

    @property
    def usage(self) -> Optional[TokenUsage]:
        """Token usage reported so far."""
        return self._usage

    @property
    def messages(self) -> List[Message]:
        """Messages finalized so far, ordered by turn index."""
        return [self._messages[index] for index in sorted(self._messages)]

    @property
    def pending(self) -> str:
        """Text received but not yet terminated."""
        return self._buffer.pending

    # ============================================================
    # Input
    # ============================================================

    def feed(self, chunk: Union[bytes, str]):
        """
        Process the next chunk of the response body.

        Raises:
            ProviderError: the provider sent an error payload
            ProtocolViolationError: a finished turn received a delta (strict mode)
            SinkError: the sink raised; the session is closed
            SessionClosedError: the session is closed
        """
        self._ensure_open()
        self._process_units(self._buffer.feed(chunk), at_end=False)

    def feed_payload(self, payload: Any, strict: bool = False):
        """
        Process a payload that was already decoded (e.g. a batch body).

        With `strict`, an unrecognizable payload fails the session with
        DecodeError instead of being logged and dropped.
        """
        self._ensure_open()
        self._handle_payload(payload, raise_decode_errors=strict)

    def close(self) -> List[Message]:
        """
        End of body: flush, finalize and return all messages.

        Returns:
            Finalized messages ordered by turn index
        """
        self._ensure_open()
        self._process_units(self._buffer.flush(), at_end=True)

        for index in sorted(self._accumulators):
            self._finish_unterminated(self._accumulators[index])
        self._accumulators.clear()

        self._set_closed()
        messages = self.messages
        self._logger.debug(
            "Stream session closed",
            messages=len(messages),
            input_tokens=self._usage.input if self._usage else None,
            output_tokens=self._usage.output if self._usage else None,
        )
        return messages

    def abort(self, exc: BaseException) -> NoReturn:
        """
        Terminate the session because the transport failed.

        Nothing is finalized. The failure is raised as a TransportError.
        """
        error = classify_transport_error(
            exc, provider=self.provider.value, request_id=self.request_id
        )
        partial = self._partial_text()
        if partial:
            error.error.partial_content = partial
            error.error.retryable = False

        self._fail(error)
        if error is exc:
            raise error
        raise error from exc

    def fail(self, error: ChatStreamError) -> NoReturn:
        """Terminate the session with `error` (e.g. an HTTP error status) and raise it."""
        self._fail(error)
        raise error

    def consume(self, chunks: Iterable[Union[bytes, str]]) -> List[Message]:
        """
        Feed every chunk and close the session.

        Exceptions raised while iterating `chunks` are transport failures.
        """
        self._mark_active()
        with self._log_context(), self._span() as span, TimedOperation(
            "stream_session", self._logger, extra={"wire_format": self.wire_format.value}
        ):
            try:
                iterator = iter(chunks)
                while True:
                    try:
                        chunk = next(iterator)
                    except StopIteration:
                        break
                    except Exception as e:
                        self.abort(e)
                    self.feed(chunk)

                messages = self.close()
            finally:
                if not self.is_closed:
                    self._abandon()

            if span is not None:
                span.set_attribute("chatstream.messages", len(messages))
            return messages

    async def aconsume(self, chunks: AsyncIterable[Union[bytes, str]]) -> List[Message]:
        """Async variant of consume(). Cancellation abandons the session."""
        self._mark_active()
        with self._log_context(), self._span() as span:
            async with TimedOperation(
                "stream_session", self._logger, extra={"wire_format": self.wire_format.value}
            ):
                try:
                    iterator = chunks.__aiter__()
                    while True:
                        try:
                            chunk = await iterator.__anext__()
                        except StopAsyncIteration:
                            break
                        except Exception as e:
                            self.abort(e)
                        self.feed(chunk)

                    messages = self.close()
                finally:
                    if not self.is_closed:
                        self._abandon()

                if span is not None:
                    span.set_attribute("chatstream.messages", len(messages))
                return messages

    def __enter__(self) -> "StreamSession":
        self._mark_active()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Leaving the block without close() abandons the body
        if not self.is_closed:
            self._abandon()

    # ============================================================
    # Processing
    # ============================================================

    def _process_units(self, units: List[str], at_end: bool):
        last = len(units) - 1
        for position, unit in enumerate(units):
            result = self._decoder.decode_unit(unit)

            if isinstance(result, Incomplete):
                # A truncated final unit may still be completed by the next chunk
                if not at_end and position == last and not self._buffer.pending:
                    self._count_unit("incomplete")
                    self._buffer.push_back(unit)
                    continue
                self._drop_unit(unit, truncated=at_end)
                continue

            if isinstance(result, Ignore):
                self._count_unit("ignored")
                if result.reason:
                    self._logger.debug("Discarded unit", reason=result.reason, raw=unit[:200])
                continue

            self._count_unit("complete")
            self._handle_payload(result.payload)

    def _handle_payload(self, payload: Any, raise_decode_errors: bool = False):
        try:
            normalized = self._normalizer.normalize(payload)
        except DecodeError as e:
            e.error.request_id = self.request_id
            if raise_decode_errors:
                self._fail(e)
                raise
            self._record_decode_error(e)
            return
        except ProviderError as e:
            e.error.request_id = self.request_id
            e.with_partial_content(self._partial_text())
            self._fail(e)
            raise

        for reason in normalized.unknown_finish_reasons:
            self._logger.warning("Unknown finish reason, turn left open", finish_reason=reason)
            self._count_anomaly("unknown_finish_reason")

        if normalized.usage is not None:
            self._usage = (
                normalized.usage if self._usage is None else self._usage.update(normalized.usage)
            )

        for delta in normalized.deltas:
            self._apply_delta(delta)

    def _apply_delta(self, delta: Delta):
        index = delta.turn_index

        if index in self._closed_indices:
            if self.settings.strict_protocol:
                error = ProtocolViolationError(
                    index, provider=self.provider.value, request_id=self.request_id
                )
                self._fail(error)
                raise error
            self._logger.warning("Dropped delta for finished turn", turn_index=index)
            self._count_anomaly("delta_after_terminal")
            return

        if self._first_delta_at is None:
            self._first_delta_at = time.perf_counter()
            if self._metrics:
                self._metrics.record_time_to_first_delta(
                    self.provider.value, self._first_delta_at - self._started_at
                )
        if self._metrics:
            self._metrics.record_delta(self.provider.value)

        self._emit(StreamEvent(kind=EventKind.DELTA, turn_index=index, delta=delta))

        accumulator = merge(self._accumulators.get(index), delta, logger=self._logger)
        if accumulator.status.is_terminal:
            self._accumulators.pop(index, None)
            self._finalize(accumulator)
        else:
            self._accumulators[index] = accumulator

    def _finalize(self, accumulator: Delta):
        index = accumulator.turn_index
        self._closed_indices.add(index)

        message = to_message(accumulator, logger=self._logger)
        self._messages[index] = message
        if self._metrics:
            self._metrics.record_message(self.provider.value, message.status.value)
        self._logger.debug(
            "Finalized message",
            turn_index=index,
            status=message.status.value,
            tool_calls=len(message.tool_calls),
        )
        self._emit(StreamEvent(kind=EventKind.MESSAGE, turn_index=index, message=message))

    def _finish_unterminated(self, accumulator: Delta):
        """Apply the end of body leniency to a turn without terminal status."""
        index = accumulator.turn_index
        self._count_anomaly("unterminated_turn")

        if not self.settings.end_of_body_leniency:
            self._logger.warning(
                "Stream ended without terminal status, turn discarded",
                turn_index=index,
            )
            self._closed_indices.add(index)
            return

        if not accumulator.has_content:
            self._logger.debug("Stream ended with an empty open turn, discarded", turn_index=index)
            self._closed_indices.add(index)
            return

        self._logger.warning(
            "Stream ended without terminal status, turn finalized as complete",
            turn_index=index,
        )
        self._finalize(merge(accumulator, Delta(status=Status.COMPLETE, turn_index=index)))

    # ============================================================
    # Helpers
    # ============================================================

    def _emit(self, event: StreamEvent):
        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception as e:
            error = SinkError(
                e,
                event.turn_index,
                provider=self.provider.value,
                request_id=self.request_id,
                partial_content=self._partial_text(),
            )
            self._fail(error)
            raise error from e

    def _ensure_open(self):
        if self._state == SessionState.CLOSED:
            raise SessionClosedError(provider=self.provider.value, request_id=self.request_id)

    def _mark_active(self):
        """Count the session in the active gauge until it closes."""
        if self._active or self.is_closed or not self._metrics:
            return
        self._active = True
        self._metrics.session_opened(self.provider.value)

    def _set_closed(self):
        if self._state == SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        if self._active:
            self._active = False
            self._metrics.session_closed(self.provider.value)

    def _abandon(self):
        """Close without finalizing anything or reporting an error."""
        self._logger.debug("Stream session abandoned", open_turns=len(self._accumulators))
        self._accumulators.clear()
        self._set_closed()

    @contextmanager
    def _log_context(self):
        """Expose the session's correlation fields to every log call made while consuming."""
        previous = LogContext.get_current()
        ctx = replace(previous, extra=dict(previous.extra)) if previous else LogContext()
        ctx.update(session_id=self.session_id, provider=self.provider.value)
        if self.request_id:
            ctx.update(request_id=self.request_id)
        LogContext.set_current(ctx)
        try:
            yield ctx
        finally:
            LogContext.set_current(previous)

    def _fail(self, error: ChatStreamError):
        """Close the session on a terminal error. Nothing more is finalized."""
        self._logger.error(
            "Stream session failed",
            error_code=error.code,
            error_kind=error.error.kind.value,
            error=str(error),
        )
        if self._metrics:
            self._metrics.record_error(self.provider.value, error.error.kind.value)
        self._accumulators.clear()
        self._set_closed()

    def _partial_text(self) -> str:
        """Text already delivered to the sink, across all turns."""
        turns: Dict[int, str] = {
            index: message.text for index, message in self._messages.items()
        }
        for index, accumulator in self._accumulators.items():
            turns[index] = accumulator.content or ""
        return "".join(turns[index] for index in sorted(turns))

    def _drop_unit(self, unit: str, truncated: bool):
        message = "Dropped truncated unit at end of body" if truncated else "Dropped malformed unit"
        self._record_decode_error(
            DecodeError(
                message,
                provider=self.provider.value,
                raw=unit,
                request_id=self.request_id,
            )
        )

    def _record_decode_error(self, error: DecodeError):
        self._logger.warning(
            str(error),
            error_code=error.code,
            raw=error.error.details.get("raw"),
        )
        if self._metrics:
            self._metrics.record_decode_error(self.provider.value)

    def _count_unit(self, result: str):
        if self._metrics:
            self._metrics.record_unit(self.provider.value, result)

    def _count_anomaly(self, anomaly: str):
        if self._metrics:
            self._metrics.record_protocol_anomaly(self.provider.value, anomaly)

    def _span(self):
        if not self.settings.tracing_enabled:
            return nullcontext()
        return session_span(
            "chatstream.session",
            provider=self.provider.value,
            session_id=self.session_id,
            request_id=self.request_id or None,
        )


def decode_response(
    provider: Union[Provider, str],
    body: Union[bytes, str, Dict[str, Any], List[Any]],
    *,
    sink: Optional[Sink] = None,
    logger: Optional[StructuredLogger] = None,
    settings: Optional[StreamSettings] = None,
    metrics: Optional[StreamMetrics] = None,
    request_id: str = "",
) -> List[Message]:
    """
    Decode a complete (non-streaming) response body.

    The body runs through the same normalizer as streamed payloads, in a
    session that lives for exactly one decode step. A JSON array body is
    treated as a sequence of payloads.

    Raises:
        DecodeError: the body is not JSON or not a recognizable response
        ProviderError: the body is an error payload
    """
    provider = Provider(provider)
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise DecodeError(
                "Response body is not valid JSON",
                provider=provider.value,
                raw=body,
                request_id=request_id,
            ) from e

    session = StreamSession(
        provider,
        sink,
        logger=logger,
        settings=settings,
        metrics=metrics,
        request_id=request_id,
    )
    payloads = body if isinstance(body, list) else [body]
    for payload in payloads:
        session.feed_payload(payload, strict=True)
    return session.close()
