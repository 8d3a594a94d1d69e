"""
chatstream - Delta Normalizer Tests

Verifies per provider:
- Streaming chunks and batch bodies map onto canonical deltas
- Finish reasons map onto Status through one table
- Parallel completions fan out by turn index
- Tool call fragments carry only the fields present
- Error payloads raise ProviderError, unknown shapes raise DecodeError
"""

import json

import pytest

from chatstream.core.errors import DecodeError, ProviderError
from chatstream.core.models import Provider, Role, Status, ToolCallFragment
from chatstream.streaming.normalizer import (
    FINISH_REASON_STATUS,
    DeltaNormalizer,
    normalize,
    resolve_status,
)


# ============================================================
# Finish reasons
# ============================================================

class TestResolveStatus:
    """Test the finish reason table."""

    @pytest.mark.parametrize("reason,status", [
        ("stop", Status.COMPLETE),
        ("end_turn", Status.COMPLETE),
        ("tool_calls", Status.COMPLETE),
        ("tool_use", Status.COMPLETE),
        ("STOP", Status.COMPLETE),
        ("length", Status.LENGTH),
        ("max_tokens", Status.LENGTH),
        ("model_length", Status.LENGTH),
        ("MAX_TOKENS", Status.LENGTH),
        ("content_filter", Status.CANCELLED),
        ("SAFETY", Status.CANCELLED),
    ])
    def test_known_reasons(self, reason, status):
        """Known reasons resolve to their status."""
        assert resolve_status(reason) == (status, True)

    def test_missing_reason(self):
        """No reason means the turn is still open."""
        assert resolve_status(None) == (Status.INCOMPLETE, True)

    def test_unknown_reason(self):
        """Unknown reasons leave the turn open and are flagged."""
        assert resolve_status("mystery") == (Status.INCOMPLETE, False)

    def test_table_has_no_incomplete_entries(self):
        """Every listed reason is terminal."""
        assert all(status.is_terminal for status in FINISH_REASON_STATUS.values())


# ============================================================
# OpenAI / Mistral
# ============================================================

class TestOpenAINormalizer:
    """Test OpenAI-style chunks and completions."""

    def test_role_chunk(self):
        """The first chunk carries the role."""
        result = normalize(Provider.OPENAI, {
            "choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}, "finish_reason": None}]
        })

        assert len(result.deltas) == 1
        delta = result.deltas[0]
        assert delta.role == Role.ASSISTANT
        assert delta.content is None
        assert delta.status == Status.INCOMPLETE

    def test_content_chunk(self):
        """Content deltas carry partial text."""
        result = normalize("openai", {
            "choices": [{"index": 0, "delta": {"content": "Hel"}, "finish_reason": None}]
        })

        assert result.deltas[0].content == "Hel"
        assert result.deltas[0].role is None

    def test_finish_chunk(self):
        """An empty delta with a finish reason is still delivered."""
        result = normalize("openai", {
            "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]
        })

        assert len(result.deltas) == 1
        assert result.deltas[0].status == Status.COMPLETE

    def test_empty_delta_ignored(self):
        """A choice with nothing in it produces no delta."""
        result = normalize("openai", {
            "choices": [{"index": 0, "delta": {}, "finish_reason": None}]
        })

        assert result.ignored

    def test_parallel_choices_fan_out(self):
        """Each choice becomes a delta for its own turn index."""
        result = normalize("openai", {
            "choices": [
                {"index": 0, "delta": {"content": "A"}, "finish_reason": None},
                {"index": 1, "delta": {"content": "B"}, "finish_reason": "length"},
            ]
        })

        assert [(d.turn_index, d.content, d.status) for d in result.deltas] == [
            (0, "A", Status.INCOMPLETE),
            (1, "B", Status.LENGTH),
        ]

    def test_tool_call_fragments(self):
        """Tool call fragments carry only the fields present."""
        start = normalize("openai", {
            "choices": [{"index": 0, "delta": {"tool_calls": [{
                "index": 0,
                "id": "call_abc",
                "type": "function",
                "function": {"name": "get_weather", "arguments": ""}
            }]}, "finish_reason": None}]
        })
        args = normalize("openai", {
            "choices": [{"index": 0, "delta": {"tool_calls": [{
                "index": 0,
                "function": {"arguments": "{\"loc"}
            }]}, "finish_reason": None}]
        })

        assert start.deltas[0].tool_calls == {
            0: ToolCallFragment(index=0, id="call_abc", name="get_weather", arguments="")
        }
        assert args.deltas[0].tool_calls == {
            0: ToolCallFragment(index=0, arguments="{\"loc")
        }

    def test_legacy_function_call(self):
        """Legacy function_call deltas become tool call 0."""
        result = normalize("openai", {
            "choices": [{"index": 0, "delta": {
                "function_call": {"name": "lookup", "arguments": "{}"}
            }, "finish_reason": None}]
        })

        fragment = result.deltas[0].tool_calls[0]
        assert fragment.name == "lookup"
        assert fragment.arguments == "{}"

    def test_usage_only_chunk(self):
        """A usage chunk has no choices but is not ignored."""
        result = normalize("openai", {
            "choices": [],
            "usage": {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12}
        })

        assert result.deltas == []
        assert not result.ignored
        assert result.usage.input == 5
        assert result.usage.output == 7
        assert result.usage.total == 12

    def test_batch_completion(self, mock_openai_response):
        """Batch bodies read `message` instead of `delta`."""
        result = normalize("openai", mock_openai_response)

        delta = result.deltas[0]
        assert delta.role == Role.ASSISTANT
        assert delta.content == "Hello! I'm a mock response."
        assert delta.status == Status.COMPLETE
        assert result.usage.input == 10

    def test_batch_tool_calls(self):
        """Batch tool calls are complete fragments."""
        result = normalize("openai", {
            "choices": [{"index": 0, "message": {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {"id": "call_1", "type": "function", "function": {"name": "a", "arguments": "{}"}},
                    {"id": "call_2", "type": "function", "function": {"name": "b", "arguments": "{\"x\": 1}"}},
                ]
            }, "finish_reason": "tool_calls"}]
        })

        tool_calls = result.deltas[0].tool_calls
        assert sorted(tool_calls) == [0, 1]
        assert tool_calls[1].name == "b"
        assert result.deltas[0].status == Status.COMPLETE

    def test_reasoning_content(self):
        """Reasoning content becomes thinking."""
        result = normalize("openai", {
            "choices": [{"index": 0, "delta": {"reasoning_content": "hmm"}, "finish_reason": None}]
        })

        assert result.deltas[0].thinking == "hmm"

    def test_mistral_model_length(self):
        """Mistral's model_length is a length stop."""
        result = normalize(Provider.MISTRAL, {
            "choices": [{"index": 0, "delta": {"content": "x"}, "finish_reason": "model_length"}]
        })

        assert result.deltas[0].status == Status.LENGTH

    def test_unknown_finish_reason(self):
        """An unknown reason is reported and keeps the turn open."""
        result = normalize("openai", {
            "choices": [{"index": 0, "delta": {"content": "x"}, "finish_reason": "weird"}]
        })

        assert result.unknown_finish_reasons == ["weird"]
        assert result.deltas[0].status == Status.INCOMPLETE

    def test_error_payload(self, mock_error_429):
        """Error payloads raise ProviderError."""
        with pytest.raises(ProviderError) as exc_info:
            normalize("openai", mock_error_429)

        assert str(exc_info.value) == "Rate limit exceeded"
        assert exc_info.value.error_type == "rate_limit_error"
        assert exc_info.value.provider == "openai"

    def test_unrecognized_payload(self):
        """Unknown shapes raise DecodeError."""
        with pytest.raises(DecodeError):
            normalize("openai", {"object": "something.else"})

    def test_non_object_payload(self):
        """Payloads must be JSON objects."""
        with pytest.raises(DecodeError):
            normalize("openai", [1, 2, 3])


# ============================================================
# Anthropic
# ============================================================

class TestAnthropicNormalizer:
    """Test Anthropic events and messages."""

    def test_message_start(self):
        """message_start carries the role and input usage."""
        result = normalize("anthropic", {
            "type": "message_start",
            "message": {
                "id": "msg_1",
                "role": "assistant",
                "content": [],
                "usage": {"input_tokens": 25, "output_tokens": 1}
            }
        })

        assert result.deltas[0].role == Role.ASSISTANT
        assert result.usage.input == 25

    @pytest.mark.parametrize("event_type", ["ping", "content_block_stop", "message_stop"])
    def test_framing_events_ignored(self, event_type):
        """Framing events produce nothing."""
        result = normalize("anthropic", {"type": event_type, "index": 0})

        assert result.ignored

    def test_empty_text_block_start_ignored(self):
        """A text block starting empty produces nothing."""
        result = normalize("anthropic", {
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "text", "text": ""}
        })

        assert result.ignored

    def test_text_delta(self):
        """Text deltas belong to turn 0."""
        result = normalize("anthropic", {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "Hi"}
        })

        assert result.deltas[0].content == "Hi"
        assert result.deltas[0].turn_index == 0

    def test_tool_use_block(self):
        """Tool calls are keyed by content block index."""
        start = normalize("anthropic", {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {}}
        })
        args = normalize("anthropic", {
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": "{\"location\": \"Paris\"}"}
        })

        assert start.deltas[0].tool_calls == {
            1: ToolCallFragment(index=1, id="toolu_1", name="get_weather", arguments="")
        }
        assert args.deltas[0].tool_calls == {
            1: ToolCallFragment(index=1, arguments="{\"location\": \"Paris\"}")
        }

    def test_thinking_and_signature(self):
        """Thinking and signature deltas are carried separately."""
        thinking = normalize("anthropic", {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "thinking_delta", "thinking": "Let me think"}
        })
        signature = normalize("anthropic", {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "signature_delta", "signature": "sig=="}
        })

        assert thinking.deltas[0].thinking == "Let me think"
        assert signature.deltas[0].signature == "sig=="
        assert not signature.ignored

    @pytest.mark.parametrize("stop_reason,status", [
        ("end_turn", Status.COMPLETE),
        ("tool_use", Status.COMPLETE),
        ("stop_sequence", Status.COMPLETE),
        ("max_tokens", Status.LENGTH),
    ])
    def test_message_delta_stop_reason(self, stop_reason, status):
        """message_delta carries the terminal status and output usage."""
        result = normalize("anthropic", {
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
            "usage": {"output_tokens": 15}
        })

        assert result.deltas[0].status == status
        assert result.usage.output == 15
        assert result.usage.input is None

    def test_error_event(self):
        """Stream error events raise ProviderError."""
        with pytest.raises(ProviderError) as exc_info:
            normalize("anthropic", {
                "type": "error",
                "error": {"type": "overloaded_error", "message": "Overloaded"}
            })

        assert exc_info.value.error_type == "overloaded_error"
        assert exc_info.value.error.retryable

    def test_unknown_event(self):
        """Unknown event types raise DecodeError."""
        with pytest.raises(DecodeError):
            normalize("anthropic", {"type": "mystery_event"})

    def test_unknown_block_delta(self):
        """Unknown delta types raise DecodeError."""
        with pytest.raises(DecodeError):
            normalize("anthropic", {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "mystery_delta"}
            })

    def test_batch_message(self, mock_anthropic_response):
        """Batch messages become one terminal delta."""
        result = normalize("anthropic", mock_anthropic_response)

        delta = result.deltas[0]
        assert delta.content == "Hello! I'm a mock Claude response."
        assert delta.status == Status.COMPLETE
        assert result.usage.output == 8

    def test_batch_message_with_tool_use(self):
        """Batch tool_use input is JSON-encoded as arguments."""
        result = normalize("anthropic", {
            "type": "message",
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Let me check"},
                {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"location": "Paris"}},
            ],
            "stop_reason": "tool_use",
        })

        delta = result.deltas[0]
        assert delta.content == "Let me check"
        assert delta.tool_calls[1].arguments == json.dumps({"location": "Paris"})
        assert delta.status == Status.COMPLETE


# ============================================================
# Google
# ============================================================

class TestGoogleNormalizer:
    """Test Gemini chunks and responses."""

    def test_text_chunk(self):
        """Candidate text becomes content; `model` is the assistant."""
        result = normalize("google", {
            "candidates": [{"content": {"role": "model", "parts": [{"text": "Hello"}]}, "index": 0}]
        })

        delta = result.deltas[0]
        assert delta.role == Role.ASSISTANT
        assert delta.content == "Hello"
        assert delta.status == Status.INCOMPLETE

    def test_batch_response(self, mock_google_response):
        """finishReason and usage metadata are mapped."""
        result = normalize("google", mock_google_response)

        assert result.deltas[0].status == Status.COMPLETE
        assert result.usage.input == 10
        assert result.usage.output == 8

    def test_safety_is_cancelled(self):
        """Safety stops cancel the turn."""
        result = normalize("google", {
            "candidates": [{"content": {"parts": []}, "finishReason": "SAFETY", "index": 0}]
        })

        assert result.deltas[0].status == Status.CANCELLED

    def test_function_call(self):
        """Function calls arrive whole with JSON-encoded args."""
        result = normalize("google", {
            "candidates": [{"content": {"role": "model", "parts": [
                {"functionCall": {"name": "get_weather", "args": {"location": "Paris"}}},
                {"functionCall": {"name": "get_time", "args": {}}},
            ]}, "index": 0}]
        })

        tool_calls = result.deltas[0].tool_calls
        assert tool_calls[0].name == "get_weather"
        assert json.loads(tool_calls[0].arguments) == {"location": "Paris"}
        assert tool_calls[0].id.startswith("call_")
        assert tool_calls[1].name == "get_time"

    def test_thought_parts(self):
        """Parts flagged as thoughts become thinking."""
        result = normalize("google", {
            "candidates": [{"content": {"parts": [
                {"text": "pondering", "thought": True},
                {"text": "answer"},
            ]}, "index": 0}]
        })

        assert result.deltas[0].thinking == "pondering"
        assert result.deltas[0].content == "answer"

    def test_candidates_fan_out(self):
        """Each candidate is its own turn; index defaults to position."""
        result = normalize("google", {
            "candidates": [
                {"content": {"parts": [{"text": "A"}]}},
                {"content": {"parts": [{"text": "B"}]}},
            ]
        })

        assert [(d.turn_index, d.content) for d in result.deltas] == [(0, "A"), (1, "B")]

    def test_blocked_prompt(self):
        """A blocked prompt without candidates cancels the turn."""
        result = normalize("google", {"promptFeedback": {"blockReason": "SAFETY"}})

        assert result.deltas[0].status == Status.CANCELLED

    def test_error_payload(self):
        """Google error payloads raise ProviderError."""
        with pytest.raises(ProviderError) as exc_info:
            normalize("google", {
                "error": {"code": 429, "message": "Resource exhausted", "status": "RESOURCE_EXHAUSTED"}
            })

        assert exc_info.value.error_type == "RESOURCE_EXHAUSTED"
        assert exc_info.value.error.details["provider_code"] == "429"


class TestDeltaNormalizer:
    """Test normalizer construction."""

    def test_unknown_provider(self):
        """Unknown provider tags are rejected."""
        with pytest.raises(ValueError):
            DeltaNormalizer("nope")

    def test_provider_by_value(self):
        """Providers can be given as strings."""
        assert DeltaNormalizer("mistral").provider == Provider.MISTRAL

    @pytest.mark.parametrize("provider,payload", [
        (Provider.OPENAI, {"choices": ["oops"]}),
        (Provider.OPENAI, {"choices": [{"index": 0, "delta": "oops"}]}),
        (Provider.OPENAI, {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": 0, "function": "oops"}]}}]}),
        (Provider.OPENAI, {"choices": [{"index": "0", "delta": {"content": "x"}}]}),
        (Provider.MISTRAL, {"choices": [{"index": 0, "delta": {"tool_calls": [
            {"index": 0, "function": {"name": "f", "arguments": {"a": 1}}}
        ]}}]}),
        (Provider.ANTHROPIC, {"type": "content_block_delta", "index": 0, "delta": "oops"}),
        (Provider.ANTHROPIC, {"type": "message_start", "message": "oops"}),
        (Provider.ANTHROPIC, {"type": "content_block_delta", "index": 0,
                              "delta": {"type": "input_json_delta", "partial_json": 5}}),
        (Provider.GOOGLE, {"candidates": ["oops"]}),
        (Provider.GOOGLE, {"candidates": [{"content": {"parts": ["oops"]}}]}),
    ])
    def test_misshapen_fields_raise_decode_error(self, provider, payload):
        """Nested fields of the wrong type are reported as DecodeError."""
        with pytest.raises(DecodeError) as exc_info:
            DeltaNormalizer(provider).normalize(payload)

        assert exc_info.value.provider == provider.value
        assert isinstance(exc_info.value.__cause__, (AttributeError, TypeError))
