"""
Test helpers for the proxy service tests.
"""

import json
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlsplit

import httpx

from service_proxy.app.forwarding.models import ProxyRequest, ProxyResponse, RequestBody


HeaderPairs = Union[Mapping[str, str], Sequence[Tuple[str, str]]]


class ReplayStream(httpx.AsyncByteStream):
    """Unread response body, the way a socket transport hands it over."""

    def __init__(self, chunks: Iterable[bytes]):
        self.chunks = list(chunks)
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def upstream_response(
    status_code: int = 200,
    *,
    json_body: Any = None,
    content: bytes = b"",
    headers: Optional[HeaderPairs] = None,
) -> httpx.Response:
    """Build an upstream response whose body has not been read yet."""
    header_list = list(headers.items()) if isinstance(headers, Mapping) else list(headers or [])
    if json_body is not None:
        content = json.dumps(json_body).encode("utf-8")
        header_list.append(("Content-Type", "application/json"))
    header_list.append(("Content-Length", str(len(content))))
    return httpx.Response(status_code, headers=header_list, stream=ReplayStream([content]))


def make_request(
    method: str,
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    body: Optional[RequestBody] = None,
) -> ProxyRequest:
    """Build a ``ProxyRequest`` from an absolute or origin-relative URL."""
    parts = urlsplit(url)
    return ProxyRequest(
        method=method.upper(),
        path=parts.path or "/",
        query=parts.query,
        headers=dict(headers or {}),
        body=body,
    )


async def read_body(response: ProxyResponse) -> bytes:
    """Drain a pipeline response and release its upstream connection."""
    if response.stream is None:
        return response.body
    try:
        chunks = [chunk async for chunk in response.stream]
    finally:
        await response.close()
    return b"".join(chunks)
