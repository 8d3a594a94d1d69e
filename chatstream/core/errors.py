"""
chatstream - Error Definitions

Error taxonomy for stream decoding:

- decode:    a malformed unit; logged and dropped, the stream continues
- provider:  an explicit error payload from the provider; terminal
- transport: connection closed or timed out; terminal
- protocol:  the provider broke the stream protocol (strict mode only)
- sink:      the caller's event sink raised; terminal
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx


class ErrorKind(str, Enum):
    """Error classification."""
    DECODE = "decode_error"
    PROVIDER = "provider_error"
    TRANSPORT = "transport_error"
    PROTOCOL = "protocol_error"
    STATE = "state_error"
    SINK = "sink_error"


@dataclass
class ErrorDetails:
    """Full error information."""
    # Core fields (always present)
    code: str
    message: str
    kind: ErrorKind

    # Context fields
    provider: Optional[str] = None
    request_id: str = ""
    http_status: Optional[int] = None

    # Recovery fields
    retryable: bool = False
    partial_content: Optional[str] = None

    # Debug fields
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.kind.value,
            "request_id": self.request_id,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.http_status is not None:
            result["http_status"] = self.http_status
        if self.partial_content:
            result["partial_content"] = self.partial_content
        if self.details:
            result["details"] = self.details

        return {"error": result}


class ChatStreamError(Exception):
    """Base exception for all chatstream errors."""

    def __init__(self, error: ErrorDetails):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def provider(self) -> Optional[str]:
        return self.error.provider


# ============================================================
# Decode Errors (non-fatal inside a session)
# ============================================================

class DecodeError(ChatStreamError):
    """A well-framed unit whose body could not be decoded or understood."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        raw: Optional[str] = None,
        request_id: str = ""
    ):
        details = {}
        if raw is not None:
            details["raw"] = raw[:500]
        super().__init__(
            ErrorDetails(
                code="decode_error",
                message=message,
                kind=ErrorKind.DECODE,
                provider=provider,
                request_id=request_id,
                retryable=False,
                details=details
            )
        )


# ============================================================
# Provider Errors (terminal)
# ============================================================

# Provider error types that indicate a transient condition
RETRYABLE_PROVIDER_TYPES = {
    "rate_limit_error",
    "rate_limit_exceeded",
    "overloaded_error",
    "server_error",
    "api_error",
    "RESOURCE_EXHAUSTED",
    "UNAVAILABLE",
    "INTERNAL",
}


class ProviderError(ChatStreamError):
    """The provider sent an explicit error payload."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        error_type: Optional[str] = None,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
        partial_content: Optional[str] = None,
        request_id: str = ""
    ):
        retryable = (
            error_type in RETRYABLE_PROVIDER_TYPES
            or http_status == 429
            or (http_status is not None and http_status >= 500)
        )
        details: Dict[str, Any] = {}
        if error_type:
            details["provider_type"] = error_type
        if error_code:
            details["provider_code"] = error_code

        super().__init__(
            ErrorDetails(
                code="provider_error",
                message=message,
                kind=ErrorKind.PROVIDER,
                provider=provider,
                request_id=request_id,
                http_status=http_status,
                # Critical: no retry once content reached the caller
                retryable=retryable and not partial_content,
                partial_content=partial_content or None,
                details=details
            )
        )

    @property
    def error_type(self) -> Optional[str]:
        return self.error.details.get("provider_type")

    def with_partial_content(self, partial_content: str) -> "ProviderError":
        """Record content that had already streamed when the error arrived."""
        if partial_content:
            self.error.partial_content = partial_content
            self.error.retryable = False
        return self

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        provider: Optional[str] = None,
        http_status: Optional[int] = None,
        request_id: str = ""
    ) -> "ProviderError":
        """
        Build from an error-shaped payload.

        Formats seen in practice:
            OpenAI:    {"error": {"message", "type", "code"}}
            Anthropic: {"type": "error", "error": {"type", "message"}}
            Google:    {"error": {"code": 429, "message", "status"}}
        """
        error = payload.get("error") or {}
        error_type = error.get("type") or error.get("status")
        error_code = error.get("code")
        return cls(
            message=error.get("message", "Unknown provider error"),
            provider=provider,
            error_type=str(error_type) if error_type is not None else None,
            error_code=str(error_code) if error_code is not None else None,
            http_status=http_status,
            request_id=request_id,
        )


def is_error_payload(payload: Any) -> bool:
    """Check for the nested `error.message` string shared by all providers."""
    if not isinstance(payload, Mapping):
        return False
    error = payload.get("error")
    return isinstance(error, Mapping) and isinstance(error.get("message"), str)


# ============================================================
# Transport Errors (terminal)
# ============================================================

class TransportError(ChatStreamError):
    """The connection carrying the response body failed."""

    def __init__(
        self,
        code: str,
        message: str,
        provider: Optional[str] = None,
        retryable: bool = True,
        http_status: Optional[int] = None,
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                code=code,
                message=message,
                kind=ErrorKind.TRANSPORT,
                provider=provider,
                request_id=request_id,
                http_status=http_status,
                retryable=retryable
            )
        )


def classify_transport_error(
    error: BaseException,
    provider: Optional[str] = None,
    request_id: str = ""
) -> TransportError:
    """
    Convert a transport-level exception into a TransportError.

    httpx exception types map to specific codes; anything else becomes a
    generic, non-retryable transport error.
    """
    if isinstance(error, TransportError):
        return error

    name = provider or "provider"

    if isinstance(error, httpx.TimeoutException):
        if isinstance(error, httpx.ConnectTimeout):
            return TransportError(
                "connection_timeout",
                f"Failed to connect to {name} API within timeout",
                provider=provider,
                request_id=request_id,
            )
        return TransportError(
            "read_timeout",
            f"{name} did not send data within timeout",
            provider=provider,
            request_id=request_id,
        )

    if isinstance(error, httpx.ConnectError):
        return TransportError(
            "connection_failed",
            f"Failed to connect to {name} API: {error}",
            provider=provider,
            request_id=request_id,
        )

    if isinstance(error, (httpx.RemoteProtocolError, httpx.ReadError)):
        return TransportError(
            "connection_closed",
            f"Connection to {name} closed mid-stream: {error}",
            provider=provider,
            request_id=request_id,
        )

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        return TransportError(
            f"upstream_{status_code}",
            f"{name} returned error {status_code}",
            provider=provider,
            retryable=status_code == 429 or status_code >= 500,
            http_status=status_code,
            request_id=request_id,
        )

    return TransportError(
        "transport_error",
        str(error) or error.__class__.__name__,
        provider=provider,
        retryable=False,
        request_id=request_id,
    )


# ============================================================
# Protocol and State Errors
# ============================================================

class ProtocolViolationError(ChatStreamError):
    """A delta arrived for a turn that had already finished."""

    def __init__(self, turn_index: int, provider: Optional[str] = None, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="delta_after_terminal",
                message=f"Received delta for turn {turn_index} after its terminal status",
                kind=ErrorKind.PROTOCOL,
                provider=provider,
                request_id=request_id,
                retryable=False,
                details={"turn_index": turn_index}
            )
        )


class SessionClosedError(ChatStreamError):
    """The session no longer accepts input."""

    def __init__(self, provider: Optional[str] = None, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="session_closed",
                message="Stream session is closed",
                kind=ErrorKind.STATE,
                provider=provider,
                request_id=request_id,
                retryable=False
            )
        )


class SinkError(ChatStreamError):
    """The event sink raised while handling a delta or message."""

    def __init__(
        self,
        cause: BaseException,
        turn_index: int,
        provider: Optional[str] = None,
        request_id: str = "",
        partial_content: Optional[str] = None
    ):
        super().__init__(
            ErrorDetails(
                code="sink_failed",
                message=f"Event sink failed for turn {turn_index}: {cause}",
                kind=ErrorKind.SINK,
                provider=provider,
                request_id=request_id,
                retryable=False,
                partial_content=partial_content or None,
                details={"turn_index": turn_index, "exception": type(cause).__name__}
            )
        )


def is_retryable_before_content(error: ChatStreamError) -> bool:
    """
    Check if a terminal error may be retried by the caller.

    Only provider/transport errors qualify, and never once partial
    content was produced.
    """
    return (
        error.error.kind in (ErrorKind.PROVIDER, ErrorKind.TRANSPORT) and
        error.error.retryable and
        not error.error.partial_content
    )
