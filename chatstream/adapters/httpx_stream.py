"""
chatstream - httpx Bridge

Feeds an already-open httpx response into a StreamSession.

The request itself (URL, headers, body, retries) belongs to the caller:

    async with client.stream("POST", url, json=body, headers=headers) as response:
        session = StreamSession("openai", sink=on_event)
        messages = await astream_response(response, session)

Error handling:
- HTTP status >= 400: the body is read and raised as ProviderError
- httpx errors while reading the body: raised as TransportError
"""

import json
from typing import List

import httpx

from ..core.errors import ProviderError, is_error_payload
from ..core.models import Message
from ..streaming.session import StreamSession


def _status_error(response: httpx.Response, body: bytes, session: StreamSession) -> ProviderError:
    """
    Build the error for an HTTP error status.

    Error payload format (all providers):
    {
        "error": {
            "message": "...",
            "type": "rate_limit_error|invalid_request_error|...",
            "code": "..."
        }
    }
    """
    status_code = response.status_code
    request_id = session.request_id or response.headers.get("x-request-id", "")
    provider = session.provider.value

    try:
        payload = json.loads(body) if body else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None

    if is_error_payload(payload):
        return ProviderError.from_payload(
            payload,
            provider=provider,
            http_status=status_code,
            request_id=request_id,
        )

    return ProviderError(
        message=f"{provider} returned error {status_code}",
        provider=provider,
        error_code=f"upstream_{status_code}",
        http_status=status_code,
        request_id=request_id,
    )


async def astream_response(response: httpx.Response, session: StreamSession) -> List[Message]:
    """
    Decode an open async httpx response body with `session`.

    Returns:
        Finalized messages ordered by turn index

    Raises:
        ProviderError: HTTP error status or error payload in the body
        TransportError: the connection failed while reading the body
    """
    if response.status_code >= 400:
        try:
            body = await response.aread()
        except httpx.HTTPError as e:
            session.abort(e)
        session.fail(_status_error(response, body, session))

    return await session.aconsume(response.aiter_bytes())


def stream_response(response: httpx.Response, session: StreamSession) -> List[Message]:
    """Sync variant of astream_response()."""
    if response.status_code >= 400:
        try:
            body = response.read()
        except httpx.HTTPError as e:
            session.abort(e)
        session.fail(_status_error(response, body, session))

    return session.consume(response.iter_bytes())
