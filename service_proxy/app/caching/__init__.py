"""
Proxy caching package.

Holds the in-memory response cache consulted by the forwarding pipeline.
Entries live for a fixed TTL and the store is bounded in size; nothing is
persisted across restarts.
"""

from .response_cache import CACHE_TTL_SECONDS, MAX_CACHE_SIZE, CacheEntry, ResponseCache

__all__ = ["CACHE_TTL_SECONDS", "MAX_CACHE_SIZE", "CacheEntry", "ResponseCache"]
