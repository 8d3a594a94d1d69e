"""
chatstream - Delta Normalizer

Maps decoded provider payloads onto the canonical Delta.

Ensures consistent output regardless of source provider:
- One Delta per turn index (parallel completions fan out)
- Finish reasons mapped onto Status through one table
- Tool call fragments carry only the fields present
- Error payloads raise instead of producing deltas

The same code handles streaming chunks and complete (batch) bodies.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..core.errors import DecodeError, ProviderError, is_error_payload
from ..core.models import Delta, Provider, Role, Status, TokenUsage, ToolCallFragment
from .tool_calls import (
    argument_text,
    fragment_from_anthropic_block,
    fragment_from_google,
    fragment_from_openai,
    fragment_from_openai_function_call,
)


# Finish reason -> status, shared by all providers
FINISH_REASON_STATUS: Dict[str, Status] = {
    # OpenAI / Mistral
    "stop": Status.COMPLETE,
    "tool_calls": Status.COMPLETE,
    "function_call": Status.COMPLETE,
    "length": Status.LENGTH,
    "model_length": Status.LENGTH,
    "content_filter": Status.CANCELLED,
    # Anthropic
    "end_turn": Status.COMPLETE,
    "stop_sequence": Status.COMPLETE,
    "tool_use": Status.COMPLETE,
    "max_tokens": Status.LENGTH,
    "refusal": Status.CANCELLED,
    # Google
    "STOP": Status.COMPLETE,
    "MAX_TOKENS": Status.LENGTH,
    "SAFETY": Status.CANCELLED,
    "RECITATION": Status.CANCELLED,
    "BLOCKLIST": Status.CANCELLED,
    "PROHIBITED_CONTENT": Status.CANCELLED,
    "SPII": Status.CANCELLED,
}

# Anthropic events that only frame the stream
ANTHROPIC_FRAMING_EVENTS = {"ping", "content_block_stop", "message_stop"}

_ROLE_ALIASES = {
    "model": Role.ASSISTANT,
}


def resolve_status(finish_reason: Optional[str]) -> Tuple[Status, bool]:
    """
    Map a finish reason onto a Status.

    Returns:
        (status, recognized). A missing reason is recognized as
        INCOMPLETE; an unknown one is INCOMPLETE and not recognized.
    """
    if finish_reason is None:
        return Status.INCOMPLETE, True
    status = FINISH_REASON_STATUS.get(finish_reason)
    if status is None:
        return Status.INCOMPLETE, False
    return status, True


def _parse_role(value: Any) -> Optional[Role]:
    if not isinstance(value, str):
        return None
    if value in _ROLE_ALIASES:
        return _ROLE_ALIASES[value]
    try:
        return Role(value)
    except ValueError:
        return None


def _text(value: Any) -> Optional[str]:
    """Only non-empty strings count as text."""
    return value if isinstance(value, str) and value else None


def _index(value: Any) -> int:
    """Turn indexes key the accumulators and must be integers."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Expected an integer index, got {value!r}")
    return value


@dataclass
class NormalizedPayload:
    """
    Everything one decoded payload contributed.

    `unknown_finish_reasons` lists finish reasons that were not in the
    table; their turns stay incomplete.
    """
    deltas: List[Delta] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    unknown_finish_reasons: List[str] = field(default_factory=list)

    @property
    def ignored(self) -> bool:
        return not self.deltas and self.usage is None


class DeltaNormalizer:
    """
    Stateless normalizer for one provider.

    Usage:
        normalizer = DeltaNormalizer(Provider.OPENAI)
        result = normalizer.normalize(payload)
        for delta in result.deltas:
            ...
    """

    def __init__(self, provider: Provider):
        self.provider = Provider(provider)

    def normalize(self, payload: Any) -> NormalizedPayload:
        """
        Normalize one decoded payload.

        Raises:
            ProviderError: the payload is an error payload
            DecodeError: the payload is not recognizable for this provider
        """
        if is_error_payload(payload):
            raise ProviderError.from_payload(payload, provider=self.provider.value)

        if not isinstance(payload, Mapping):
            raise DecodeError(
                f"Expected a JSON object from {self.provider.value}, got {type(payload).__name__}",
                provider=self.provider.value,
                raw=json.dumps(payload, default=str),
            )

        try:
            if self.provider in (Provider.OPENAI, Provider.MISTRAL):
                return self._normalize_openai(payload)
            if self.provider == Provider.ANTHROPIC:
                return self._normalize_anthropic(payload)
            return self._normalize_google(payload)
        except (AttributeError, TypeError) as e:
            # Framed correctly, but a nested field has the wrong shape
            raise self._unrecognized(payload) from e

    def _unrecognized(self, payload: Mapping[str, Any]) -> DecodeError:
        return DecodeError(
            f"Unrecognized {self.provider.value} payload",
            provider=self.provider.value,
            raw=json.dumps(payload, default=str),
        )

    # ============================================================
    # Provider-specific normalization methods
    # ============================================================

    def _normalize_openai(self, payload: Mapping[str, Any]) -> NormalizedPayload:
        """
        Normalize an OpenAI-style chunk or completion (also Mistral).

        Streaming chunks carry `choices[].delta`, batch bodies carry
        `choices[].message`.
        """
        if "choices" not in payload and "usage" not in payload:
            raise self._unrecognized(payload)

        result = NormalizedPayload(usage=_openai_usage(payload.get("usage")))

        for position, choice in enumerate(payload.get("choices") or []):
            if "delta" in choice:
                body = choice.get("delta") or {}
            else:
                body = choice.get("message") or {}

            tool_calls: Dict[int, ToolCallFragment] = {}
            for tc_position, tc in enumerate(body.get("tool_calls") or []):
                fragment = fragment_from_openai(tc, default_index=tc_position)
                tool_calls[fragment.index] = fragment
            if body.get("function_call"):
                tool_calls[0] = fragment_from_openai_function_call(body["function_call"])

            finish_reason = choice.get("finish_reason")
            status, recognized = resolve_status(finish_reason)
            if not recognized:
                result.unknown_finish_reasons.append(finish_reason)

            delta = Delta(
                role=_parse_role(body.get("role")),
                content=_text(body.get("content")),
                thinking=_text(body.get("reasoning_content")),
                tool_calls=tool_calls,
                status=status,
                turn_index=_index(choice.get("index", position)),
            )
            if delta.role or delta.has_content or delta.status.is_terminal:
                result.deltas.append(delta)

        return result

    def _normalize_anthropic(self, payload: Mapping[str, Any]) -> NormalizedPayload:
        """
        Normalize an Anthropic stream event or message body.

        Anthropic streams carry a single completion, so every delta has
        turn index 0. Content block indexes become tool call indexes.
        """
        event_type = payload.get("type")
        result = NormalizedPayload()

        if event_type in ANTHROPIC_FRAMING_EVENTS:
            return result

        if event_type == "message_start":
            message = payload.get("message") or {}
            result.usage = _anthropic_usage(message.get("usage"))
            result.deltas.append(
                Delta(role=_parse_role(message.get("role")) or Role.ASSISTANT)
            )
            return result

        if event_type == "content_block_start":
            index = _index(payload.get("index", 0))
            block = payload.get("content_block") or {}
            block_type = block.get("type")

            if block_type == "text":
                delta = Delta(content=_text(block.get("text")))
            elif block_type == "tool_use":
                delta = Delta(tool_calls={index: fragment_from_anthropic_block(block, index)})
            elif block_type == "thinking":
                delta = Delta(
                    thinking=_text(block.get("thinking")),
                    signature=_text(block.get("signature")),
                )
            else:
                return result

            if delta.has_content or delta.signature:
                result.deltas.append(delta)
            return result

        if event_type == "content_block_delta":
            index = _index(payload.get("index", 0))
            delta_data = payload.get("delta") or {}
            delta_type = delta_data.get("type")

            if delta_type == "text_delta":
                delta = Delta(content=_text(delta_data.get("text")))
            elif delta_type == "input_json_delta":
                delta = Delta(tool_calls={
                    index: ToolCallFragment(
                        index=index,
                        arguments=argument_text(delta_data.get("partial_json")),
                    )
                })
            elif delta_type == "thinking_delta":
                delta = Delta(thinking=_text(delta_data.get("thinking")))
            elif delta_type == "signature_delta":
                delta = Delta(signature=_text(delta_data.get("signature")))
            else:
                raise self._unrecognized(payload)

            if delta.has_content or delta.signature:
                result.deltas.append(delta)
            return result

        if event_type == "message_delta":
            result.usage = _anthropic_usage(payload.get("usage"))
            stop_reason = (payload.get("delta") or {}).get("stop_reason")
            status, recognized = resolve_status(stop_reason)
            if not recognized:
                result.unknown_finish_reasons.append(stop_reason)
            if status.is_terminal:
                result.deltas.append(Delta(status=status))
            return result

        if event_type == "message":
            return self._normalize_anthropic_message(payload)

        raise self._unrecognized(payload)

    def _normalize_anthropic_message(self, payload: Mapping[str, Any]) -> NormalizedPayload:
        """Normalize a complete (non-streaming) Anthropic message."""
        text_parts: List[str] = []
        thinking_parts: List[str] = []
        signature: Optional[str] = None
        tool_calls: Dict[int, ToolCallFragment] = {}

        for index, block in enumerate(payload.get("content") or []):
            block_type = block.get("type")
            if block_type == "text":
                text_parts.append(block.get("text") or "")
            elif block_type == "thinking":
                thinking_parts.append(block.get("thinking") or "")
                signature = block.get("signature") or signature
            elif block_type == "tool_use":
                tool_calls[index] = fragment_from_anthropic_block(block, index)

        stop_reason = payload.get("stop_reason")
        status, recognized = resolve_status(stop_reason)

        result = NormalizedPayload(usage=_anthropic_usage(payload.get("usage")))
        if not recognized:
            result.unknown_finish_reasons.append(stop_reason)
        result.deltas.append(
            Delta(
                role=_parse_role(payload.get("role")) or Role.ASSISTANT,
                content=_text("".join(text_parts)),
                thinking=_text("".join(thinking_parts)),
                signature=signature,
                tool_calls=tool_calls,
                status=status,
            )
        )
        return result

    def _normalize_google(self, payload: Mapping[str, Any]) -> NormalizedPayload:
        """
        Normalize a Google Gemini chunk or response.

        Gemini has no delta/message distinction: every chunk is a partial
        response with `candidates[].content.parts`.
        """
        if (
            "candidates" not in payload
            and "usageMetadata" not in payload
            and "promptFeedback" not in payload
        ):
            raise self._unrecognized(payload)

        result = NormalizedPayload(usage=_google_usage(payload.get("usageMetadata")))

        candidates = payload.get("candidates") or []
        block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
        if not candidates and block_reason:
            # The prompt itself was rejected, no candidate was generated
            result.deltas.append(Delta(role=Role.ASSISTANT, status=Status.CANCELLED))
            return result

        for position, candidate in enumerate(candidates):
            content = candidate.get("content") or {}

            text_parts: List[str] = []
            thinking_parts: List[str] = []
            tool_calls: Dict[int, ToolCallFragment] = {}
            for part in content.get("parts") or []:
                if "functionCall" in part:
                    index = len(tool_calls)
                    tool_calls[index] = fragment_from_google(part, index)
                elif isinstance(part.get("text"), str):
                    if part.get("thought"):
                        thinking_parts.append(part["text"])
                    else:
                        text_parts.append(part["text"])

            finish_reason = candidate.get("finishReason")
            status, recognized = resolve_status(finish_reason)
            if not recognized:
                result.unknown_finish_reasons.append(finish_reason)

            delta = Delta(
                role=_parse_role(content.get("role")),
                content=_text("".join(text_parts)),
                thinking=_text("".join(thinking_parts)),
                tool_calls=tool_calls,
                status=status,
                turn_index=_index(candidate.get("index", position)),
            )
            if delta.role or delta.has_content or delta.status.is_terminal:
                result.deltas.append(delta)

        return result


# ============================================================
# Usage
# ============================================================

def _openai_usage(usage: Any) -> Optional[TokenUsage]:
    if not isinstance(usage, Mapping):
        return None
    return TokenUsage(
        input=usage.get("prompt_tokens"),
        output=usage.get("completion_tokens"),
        raw=dict(usage),
    )


def _anthropic_usage(usage: Any) -> Optional[TokenUsage]:
    if not isinstance(usage, Mapping):
        return None
    return TokenUsage(
        input=usage.get("input_tokens"),
        output=usage.get("output_tokens"),
        raw=dict(usage),
    )


def _google_usage(usage: Any) -> Optional[TokenUsage]:
    if not isinstance(usage, Mapping):
        return None
    return TokenUsage(
        input=usage.get("promptTokenCount"),
        output=usage.get("candidatesTokenCount"),
        raw=dict(usage),
    )


_NORMALIZERS: Dict[Provider, DeltaNormalizer] = {
    provider: DeltaNormalizer(provider) for provider in Provider
}


def get_normalizer(provider: Provider) -> DeltaNormalizer:
    """Get the shared normalizer for a provider."""
    return _NORMALIZERS[Provider(provider)]


def normalize(provider: Provider, payload: Any) -> NormalizedPayload:
    """Normalize one decoded payload for `provider`."""
    return get_normalizer(provider).normalize(payload)
