"""
Translation between Starlette requests/responses and the pipeline's models.
"""

from typing import List, Tuple

import httpx
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse

from ..forwarding.models import ProxyRequest, ProxyResponse
from ..forwarding.pipeline import BODYLESS_METHODS


def build_proxy_request(request: Request) -> ProxyRequest:
    """Build a ``ProxyRequest`` from an incoming Starlette request."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    # Some servers leave the query string in raw_path.
    path = path.split("?", 1)[0]

    method = request.method.upper()
    body = None if method in BODYLESS_METHODS else request.stream()

    return ProxyRequest(
        method=method,
        path=path,
        query=request.url.query,
        headers=dict(request.headers.items()),
        body=body,
    )


def _raw_headers(headers: httpx.Headers) -> List[Tuple[bytes, bytes]]:
    # ASGI wants lower-cased names; repeated names stay separate entries.
    return [(name.lower(), value) for name, value in headers.raw]


def render_response(proxy_response: ProxyResponse) -> Response:
    """Render a pipeline response, streaming upstream bodies as they arrive."""
    if proxy_response.is_streaming:
        response = StreamingResponse(
            proxy_response.stream,
            status_code=proxy_response.status_code,
            background=BackgroundTask(proxy_response.close),
        )
    else:
        response = Response(
            content=proxy_response.body,
            status_code=proxy_response.status_code,
        )

    response.raw_headers.extend(_raw_headers(proxy_response.headers))
    return response
