"""
chatstream - Transport Adapters

Bridges from HTTP client responses into stream sessions.
"""

from .httpx_stream import astream_response, stream_response

__all__ = [
    "astream_response",
    "stream_response",
]
