"""
Request forwarding package.
"""

from .models import ProxyRequest, ProxyResponse
from .pipeline import ForwardingPipeline, derive_cache_key

__all__ = ["ForwardingPipeline", "ProxyRequest", "ProxyResponse", "derive_cache_key"]
