"""
Tests for the proxy service application.
"""

import asyncio

import brotli
import httpx
import pytest
from fastapi.testclient import TestClient

from service_proxy.app.main import create_app
from service_proxy.tests.helpers import upstream_response


class UpstreamStub:
    """Synchronous MockTransport handler with a call log."""

    def __init__(self, response_factory):
        self.response_factory = response_factory
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        return self.response_factory(request)


def make_client(handler, **overrides) -> TestClient:
    app = create_app(upstream_transport=httpx.MockTransport(handler), **overrides)
    return TestClient(app)


@pytest.fixture
def movie_upstream():
    return UpstreamStub(lambda request: upstream_response(200, json_body={"id": 550, "title": "Fight Club"}))


@pytest.fixture
def client(movie_upstream):
    """Create test client."""
    return make_client(movie_upstream)


@pytest.fixture
def service(client):
    return client.app.state.proxy_service


def test_preflight(client, movie_upstream):
    response = client.options("/anything")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "GET, POST, PUT, DELETE, PATCH, OPTIONS"
    assert response.headers["access-control-max-age"] == "86400"
    assert movie_upstream.requests == []


def test_health_check(client, movie_upstream):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "TMDB API Proxy"
    assert data["target"] == "https://api.themoviedb.org"
    assert movie_upstream.requests == []


def test_ping(client):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_movie_is_cached_after_first_request(client, service, movie_upstream):
    first = client.get("/3/movie/550?language=en-US", headers={"Authorization": "Bearer token"})
    second = client.get("/3/movie/550?language=en-US")

    assert first.status_code == 200
    assert first.json() == {"id": 550, "title": "Fight Club"}
    assert first.headers["access-control-allow-origin"] == "*"
    assert first.headers["x-cache"] == "MISS"

    assert second.status_code == 200
    assert second.json() == {"id": 550, "title": "Fight Club"}
    assert second.headers["x-cache"] == "HIT"

    assert len(movie_upstream.requests) == 1
    sent = movie_upstream.requests[0]
    assert str(sent.url) == "https://api.themoviedb.org/3/movie/550?language=en-US"
    assert sent.headers["host"] == "api.themoviedb.org"
    assert sent.headers["authorization"] == "Bearer token"
    assert service.response_cache.lookup("/3/movie/550?language=en-US") is not None


def test_error_status_passes_through():
    upstream = UpstreamStub(
        lambda request: upstream_response(
            401,
            json_body={"status_code": 7, "status_message": "Invalid API key"},
            headers={"X-RateLimit-Remaining": "39"},
        )
    )
    client = make_client(upstream)

    response = client.get("/3/movie/550")

    assert response.status_code == 401
    assert response.json()["status_message"] == "Invalid API key"
    assert response.headers["x-ratelimit-remaining"] == "39"
    assert response.headers["access-control-allow-origin"] == "*"
    assert client.app.state.proxy_service.response_cache.get_stats()["size"] == 0


def test_post_body_is_forwarded():
    upstream = UpstreamStub(lambda request: upstream_response(201, json_body={"success": True}))
    client = make_client(upstream)

    response = client.post("/3/movie/550/rating", json={"value": 8.5})

    assert response.status_code == 201
    assert response.json() == {"success": True}
    sent = upstream.requests[0]
    assert sent.method == "POST"
    assert sent.content == b'{"value":8.5}' or sent.content == b'{"value": 8.5}'


def test_connection_refused_returns_502():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    client = make_client(refuse)

    response = client.get("/3/movie/550")

    assert response.status_code == 502
    body = response.json()
    assert body["success"] is False
    assert body["status_code"] == 502
    assert response.headers["access-control-allow-origin"] == "*"


def test_hanging_upstream_returns_504():
    async def hang(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        return httpx.Response(200, json={})

    client = make_client(hang, request_timeout_seconds=0.05)

    response = client.get("/3/movie/550")

    assert response.status_code == 504
    body = response.json()
    assert body["status_code"] == 504
    assert "timeout" in body["status_message"].lower()


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["x-request-id"] == "req-123"


def test_request_id_is_generated(client):
    response = client.get("/health")
    assert response.headers["x-request-id"]


def test_metrics_endpoint(client):
    client.get("/3/movie/550")

    response = client.get("/_proxy/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]
    assert "cache_misses_total" in response.text
    assert "upstream_requests_total" in response.text


def test_cache_stats_endpoint(client, movie_upstream):
    client.get("/3/movie/550")
    client.get("/3/movie/550")

    response = client.get("/_proxy/cache/stats")

    assert response.status_code == 200
    stats = response.json()
    assert stats["size"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["max_size"] == 1000
    assert len(movie_upstream.requests) == 1


def test_settings_overrides_are_applied(movie_upstream):
    client = make_client(movie_upstream, cache_max_size=2, cache_ttl_seconds=5, display_name="Edge")
    service = client.app.state.proxy_service

    assert service.response_cache.max_size == 2
    assert service.response_cache.ttl_seconds == 5
    assert client.get("/health").json()["service"] == "Edge"


def test_sweeper_follows_application_lifecycle(movie_upstream):
    app = create_app(upstream_transport=httpx.MockTransport(movie_upstream))
    service = app.state.proxy_service

    with TestClient(app) as client:
        assert service.response_cache.sweeper_running is True
        status = client.get("/_proxy/status").json()
        assert status["dependencies"]["cache_sweeper"] == "ok"

    assert service.response_cache.sweeper_running is False


def test_repeated_upstream_headers_reach_the_client():
    upstream = UpstreamStub(
        lambda request: upstream_response(
            401,
            json_body={"status_code": 3},
            headers=[("Set-Cookie", "session=a; Path=/"), ("Set-Cookie", "tracking=b; Path=/")],
        )
    )
    client = make_client(upstream)

    response = client.get("/3/account")

    assert response.status_code == 401
    assert response.headers.get_list("set-cookie") == ["session=a; Path=/", "tracking=b; Path=/"]
    assert response.headers.get_list("access-control-allow-origin") == ["*"]


def test_brotli_movie_is_decoded_for_browser_clients():
    upstream = UpstreamStub(
        lambda request: upstream_response(
            200,
            content=brotli.compress(b'{"id":550}'),
            headers={"Content-Type": "application/json", "Content-Encoding": "br"},
        )
    )
    client = make_client(upstream)

    response = client.get("/3/movie/550", headers={"Accept-Encoding": "gzip, deflate, br, zstd"})

    assert response.status_code == 200
    assert response.json() == {"id": 550}
    assert response.headers["x-cache"] == "MISS"
