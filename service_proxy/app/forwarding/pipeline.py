"""
Request forwarding pipeline.

Every inbound request walks the same path: CORS preflight and health checks
are answered locally, cacheable requests are served from the response cache
when possible, and everything else is relayed to the upstream under a hard
timeout. Failures never escape as transport errors; they are translated into
a JSON error envelope.
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Set, Tuple, Union, TYPE_CHECKING

import httpx

from shared.errors import MalformedUpstreamBodyError, ProxyError, UpstreamTimeoutError, UpstreamUnavailableError
from shared.logging import get_logger

from ..caching.response_cache import CACHE_TTL_SECONDS, ResponseCache
from .models import ProxyRequest, ProxyResponse

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

    from ..adapters.upstream_client import UpstreamClient


REQUEST_TIMEOUT_SECONDS = 30.0
HEALTH_PATHS = frozenset({"/health", "/ping"})
DEFAULT_CACHEABLE_METHODS = frozenset({"GET"})

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, PATCH, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With, Accept, Accept-Language",
    "Access-Control-Max-Age": "86400",
}

# Never forwarded upstream: the edge's own host and proxy bookkeeping.
EXCLUDED_REQUEST_HEADERS = frozenset({
    "host",
    "cf-ray",
    "cf-connecting-ip",
    "cf-visitor",
    "x-forwarded-for",
    "x-forwarded-proto",
    "x-real-ip",
    "connection",
    "upgrade",
})

# Framing headers that belong to the upstream connection, not the relayed body.
HOP_BY_HOP_RESPONSE_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "transfer-encoding",
})

BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def derive_cache_key(request: ProxyRequest) -> str:
    """Cache key for a request: its path and query, ignoring method and body."""
    return request.target


def _header_name(name: Union[str, bytes]) -> str:
    if isinstance(name, bytes):
        return name.decode("latin-1").lower()
    return name.lower()


def copy_headers(
    source: Iterable[Tuple[Union[str, bytes], Union[str, bytes]]],
    exclude: Iterable[str] = (),
) -> httpx.Headers:
    """Copy header pairs, skipping names in ``exclude`` (case-insensitive).

    Repeated names are kept as separate entries.
    """
    excluded = {name.lower() for name in exclude}
    return httpx.Headers([
        (name, value) for name, value in source if _header_name(name) not in excluded
    ])


def with_cors(headers: Optional[Union[httpx.Headers, Mapping[str, str]]] = None) -> httpx.Headers:
    """Return ``headers`` with the permissive CORS set overwritten or added."""
    merged = httpx.Headers(headers)
    # Headers.update replaces every existing spelling of a name.
    merged.update(CORS_HEADERS)
    return merged


def _format_iso(value: datetime) -> str:
    """Format datetime values as ISO-8601 strings with millisecond precision."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def json_response(status_code: int, payload: Any, extra_headers: Optional[Mapping[str, str]] = None) -> ProxyResponse:
    headers = with_cors({"Content-Type": "application/json"})
    if extra_headers:
        headers.update(extra_headers)
    return ProxyResponse(
        status_code=status_code,
        headers=headers,
        body=json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8"),
    )


def error_response(error: ProxyError) -> ProxyResponse:
    return json_response(error.status_code, error.to_response().model_dump())


class ForwardingPipeline:
    """Turns a ``ProxyRequest`` into a ``ProxyResponse``."""

    def __init__(
        self,
        cache: ResponseCache,
        upstream: UpstreamClient,
        *,
        service_name: str = "TMDB API Proxy",
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
        cache_ttl: float = CACHE_TTL_SECONDS,
        cacheable_methods: Iterable[str] = DEFAULT_CACHEABLE_METHODS,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.upstream = upstream
        self.service_name = service_name
        self.request_timeout = request_timeout
        self.cache_ttl = cache_ttl
        self.cacheable_methods = frozenset(method.upper() for method in cacheable_methods)
        self.metrics = metrics
        self.logger = get_logger("proxy.pipeline")
        self._discarded: Set[asyncio.Task] = set()

    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        """Answer one request; never raises for upstream failures."""
        method = request.method.upper()

        if method == "OPTIONS":
            return ProxyResponse(status_code=200, headers=with_cors())

        if request.path in HEALTH_PATHS:
            return self._health_response()

        cache_key = derive_cache_key(request)
        cacheable = method in self.cacheable_methods

        if cacheable:
            entry = self.cache.lookup(cache_key)
            if entry is not None:
                self.logger.debug("Cache hit", key=cache_key)
                return json_response(200, entry.payload, {"X-Cache": "HIT"})

        self.logger.info("Proxying request", method=method, target=request.target)
        start = time.perf_counter()
        try:
            upstream_response, payload = await self._exchange_within_timeout(method, request, cacheable)
        except asyncio.TimeoutError:
            self._record_upstream("timeout", start)
            self.logger.warning(
                "Upstream request exceeded timeout",
                target=request.target,
                timeout_seconds=self.request_timeout,
            )
            return error_response(UpstreamTimeoutError())
        except ProxyError as exc:
            self._record_upstream(exc.code.lower(), start)
            self.logger.error("Upstream request failed", target=request.target, code=exc.code, error=exc.message)
            return error_response(exc)
        except Exception as exc:
            self._record_upstream("error", start)
            self.logger.error("Unexpected proxy error", target=request.target, error=str(exc), exc_info=True)
            return error_response(UpstreamUnavailableError())

        self._record_upstream(str(upstream_response.status_code), start)

        if payload is not None:
            # The exchange finished inside the timeout, so this write cannot race a 504.
            self.cache.insert(cache_key, payload, ttl=self.cache_ttl)
            self.logger.info("Cache miss and stored", key=cache_key)
            return json_response(200, payload, {"X-Cache": "MISS"})

        if cacheable:
            self.logger.info(
                "Response not cached due to non-200 status",
                key=cache_key,
                status_code=upstream_response.status_code,
            )
        return self._relay(upstream_response)

    async def _exchange_within_timeout(
        self,
        method: str,
        request: ProxyRequest,
        cacheable: bool,
    ) -> Tuple[httpx.Response, Optional[Any]]:
        """Run ``_exchange`` under the request timeout.

        When the deadline or a caller cancellation wins, the exchange is
        cancelled; a result that lands anyway has its response closed instead
        of being dropped with the connection still open.
        """
        task = asyncio.ensure_future(self._exchange(method, request, cacheable))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.request_timeout)
        except BaseException:
            task.cancel()
            task.add_done_callback(self._discard_exchange)
            raise

    def _discard_exchange(self, task: asyncio.Future) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        upstream_response, _ = task.result()
        closing = asyncio.ensure_future(upstream_response.aclose())
        self._discarded.add(closing)
        closing.add_done_callback(self._discarded.discard)
        self.logger.debug("Closing upstream response that finished after the deadline")

    async def _exchange(
        self,
        method: str,
        request: ProxyRequest,
        cacheable: bool,
    ) -> Tuple[httpx.Response, Optional[Any]]:
        """Send upstream; read and parse the body when it is going to be cached."""
        response = await self.upstream.send(
            method,
            request.target,
            self._outbound_headers(request),
            None if method in BODYLESS_METHODS else request.body,
        )

        if not (cacheable and response.status_code == 200):
            return response, None

        try:
            await response.aread()
        except BaseException:
            await response.aclose()
            raise
        await response.aclose()

        try:
            return response, response.json()
        except ValueError as exc:
            raise MalformedUpstreamBodyError(
                details={"target": request.target, "error": str(exc)}
            ) from exc

    def _outbound_headers(self, request: ProxyRequest) -> httpx.Headers:
        headers = copy_headers(request.headers.items(), EXCLUDED_REQUEST_HEADERS)
        headers["Host"] = self.upstream.canonical_host
        return headers

    def _relay(self, upstream_response: httpx.Response) -> ProxyResponse:
        """Pass the upstream status, headers and raw body through."""
        headers = with_cors(
            copy_headers(upstream_response.headers.raw, HOP_BY_HOP_RESPONSE_HEADERS)
        )
        return ProxyResponse(
            status_code=upstream_response.status_code,
            headers=headers,
            stream=upstream_response.aiter_raw(),
            on_close=upstream_response.aclose,
            reason_phrase=upstream_response.reason_phrase,
        )

    def _health_response(self) -> ProxyResponse:
        if self.metrics:
            self.metrics.record_health_check("ok")
        return json_response(200, {
            "status": "ok",
            "service": self.service_name,
            "timestamp": _format_iso(datetime.now(timezone.utc)),
            "target": self.upstream.base_url,
        })

    def _record_upstream(self, outcome: str, start: float) -> None:
        if self.metrics:
            self.metrics.record_upstream_request(outcome, time.perf_counter() - start)
