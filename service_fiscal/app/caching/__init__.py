"""
Client caching package.

Provides the in-memory request cache used by the data providers to avoid
duplicate network calls within a session. Prefer short-lived entries and
explicit write-back after local mutations.
"""

from .request_cache import (
    DEFAULT_TTL,
    CacheEntry,
    RequestCache,
    build_cache_key,
    fetch_with_cache,
    get_cache_data,
    get_default_cache,
    invalidate_cache,
    set_cache_data,
)

__all__ = [
    "DEFAULT_TTL",
    "CacheEntry",
    "RequestCache",
    "build_cache_key",
    "fetch_with_cache",
    "get_cache_data",
    "get_default_cache",
    "invalidate_cache",
    "set_cache_data",
]
