"""
Reverse proxy service for the TMDB API.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import Request

from shared.base_service import INTERNAL_PREFIX, BaseService
from service_proxy.app.adapters.hosting import build_proxy_request, render_response
from service_proxy.app.adapters.upstream_client import UpstreamClient
from service_proxy.app.caching.response_cache import ResponseCache
from service_proxy.app.forwarding.pipeline import ForwardingPipeline


PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]


class ProxyService(BaseService):
    """Reverse proxy service implementation."""

    def __init__(
        self,
        *,
        upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
        **config_overrides: Any,
    ):
        super().__init__("proxy", 8000, **config_overrides)

        self.response_cache = ResponseCache(
            max_size=self.config.cache_max_size,
            ttl_seconds=self.config.cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.upstream_client = UpstreamClient(
            self.config.upstream_base_url,
            timeout=self.config.request_timeout_seconds,
            transport=upstream_transport,
        )
        self.pipeline = ForwardingPipeline(
            self.response_cache,
            self.upstream_client,
            service_name=self.config.display_name,
            request_timeout=self.config.request_timeout_seconds,
            cache_ttl=self.config.cache_ttl_seconds,
            metrics=self.metrics,
        )

        @self.app.on_event("startup")
        async def _startup():
            await self.response_cache.start_sweeper(self.config.cache_sweep_interval_seconds)
            self.logger.info(
                "Proxy started",
                upstream=self.config.upstream_base_url,
                timeout_seconds=self.config.request_timeout_seconds,
                cache_ttl_seconds=self.config.cache_ttl_seconds,
                cache_max_size=self.config.cache_max_size,
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.response_cache.stop_sweeper()
            await self.upstream_client.close()

        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.proxy_service = self

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"cache_sweeper": "ok" if self.response_cache.sweeper_running else "stopped"}

    def _setup_proxy_routes(self):
        """Set up cache introspection and the catch-all proxy route."""

        @self.app.get(f"{INTERNAL_PREFIX}/cache/stats")
        async def cache_stats():
            """Response cache statistics."""
            return self.response_cache.get_stats()

        # Registered last so the internal routes above take precedence.
        @self.app.api_route("/{full_path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def proxy(request: Request, full_path: str):
            """Relay any other request through the forwarding pipeline."""
            proxy_response = await self.pipeline.handle(build_proxy_request(request))
            return render_response(proxy_response)


def create_app(**kwargs: Any):
    """Create FastAPI application."""
    service = ProxyService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = ProxyService()
    service.run()
