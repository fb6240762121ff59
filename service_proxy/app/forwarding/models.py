"""
Transport-neutral request and response shapes handled by the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Mapping, Optional, Union

import httpx


RequestBody = Union[bytes, AsyncIterable[bytes]]


@dataclass(frozen=True)
class ProxyRequest:
    """Inbound request as seen by the forwarding pipeline."""

    method: str
    path: str
    query: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[RequestBody] = None

    @property
    def target(self) -> str:
        """Path plus query string, exactly as received."""
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path


@dataclass
class ProxyResponse:
    """Response produced by the pipeline.

    Exactly one of ``body`` or ``stream`` carries the payload. A streamed
    response owns an upstream connection; ``on_close`` releases it and must be
    awaited once the stream has been consumed or abandoned. ``headers`` is a
    multi-dict, so repeated upstream headers such as ``Set-Cookie`` survive.
    """

    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    stream: Optional[AsyncIterator[bytes]] = None
    on_close: Optional[Callable[[], Awaitable[None]]] = None
    reason_phrase: str = ""

    @property
    def is_streaming(self) -> bool:
        return self.stream is not None

    async def close(self) -> None:
        if self.on_close is not None:
            on_close, self.on_close = self.on_close, None
            await on_close()
