"""
Shared configuration management for the TMDB Proxy.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UPSTREAM_BASE_URL = "https://api.themoviedb.org"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROXY_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Upstream
    upstream_base_url: str = Field(default=DEFAULT_UPSTREAM_BASE_URL)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Response cache
    cache_ttl_seconds: float = Field(default=600.0, gt=0)
    cache_max_size: int = Field(default=1000, ge=1)
    cache_sweep_interval_seconds: Optional[float] = Field(default=None, gt=0)

    # Reported by the health check
    display_name: str = Field(default="TMDB API Proxy")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
