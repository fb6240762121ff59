"""
Async HTTP client for the single upstream API fronted by the proxy.
"""

from __future__ import annotations

from typing import AsyncIterable, Mapping, Optional, Union

import httpx

from shared.errors import UpstreamTimeoutError, UpstreamUnavailableError
from shared.logging import get_logger


class UpstreamClient:
    """Long-lived httpx client bound to one upstream origin."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.logger = get_logger("proxy.upstream")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            follow_redirects=False,
        )

    @property
    def canonical_host(self) -> str:
        """Host header value the upstream expects."""
        return httpx.URL(self.base_url).netloc.decode("ascii")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def send(
        self,
        method: str,
        target: str,
        headers: Mapping[str, str],
        content: Optional[Union[bytes, AsyncIterable[bytes]]] = None,
    ) -> httpx.Response:
        """
        Send one request and return as soon as the response head arrives.

        The body is left unread; callers either read it or stream it and
        must close the response afterwards.
        """
        url = f"{self.base_url}{target}"
        request = self._client.build_request(method, url, headers=headers, content=content)

        try:
            return await self._client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            self.logger.warning("Upstream request timed out", method=method, url=url, error=str(exc))
            raise UpstreamTimeoutError(details={"url": url}) from exc
        except httpx.HTTPError as exc:
            self.logger.error("Upstream request failed", method=method, url=url, error=str(exc))
            raise UpstreamUnavailableError(details={"url": url, "error": str(exc)}) from exc
