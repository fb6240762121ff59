"""
Shared utilities for the TMDB Proxy.

This package aggregates the common building blocks used by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and the JSON error envelope
- base_service: FastAPI application scaffolding

Do not import from service packages into shared/.
"""
