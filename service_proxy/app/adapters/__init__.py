"""
Adapters package for the proxy service.

Contains the boundaries with the outside world: the httpx client that talks
to the upstream API and the translation between Starlette requests and the
pipeline's models. Keep adapters thin and side-effect free outside of
explicit calls.
"""

from .upstream_client import UpstreamClient

__all__ = ["UpstreamClient"]
