"""
Cache Module

In-memory LRU response cache with per-entry TTL.
"""

from llm_reliability.infrastructure.cache.response_cache import (
    CacheConfig,
    CacheEntry,
    CacheKey,
    CacheStatistics,
    ResponseCache,
    canonical_json,
)

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "CacheStatistics",
    "ResponseCache",
    "canonical_json",
]
