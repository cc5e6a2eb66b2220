"""
Data layer module for response caching.
"""
from sales_dashboard.data.cache_manager import (
    CacheEntry,
    CacheLookup,
    CacheManager,
    CacheOptions,
    CacheRegistry,
    create_cache_registry,
    invalidate_related_cache,
)

__all__ = [
    "CacheEntry",
    "CacheLookup",
    "CacheManager",
    "CacheOptions",
    "CacheRegistry",
    "create_cache_registry",
    "invalidate_related_cache",
]
