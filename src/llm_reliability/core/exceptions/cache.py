"""
Cache Exceptions

Author: System Architect
Date: 2025-12-10
"""

from llm_reliability.core.exceptions.base import ReliabilityError


class CacheError(ReliabilityError):
    """Base exception for response cache errors."""
    pass


class CacheEntryTooLargeError(CacheError):
    """Raised when a response exceeds the configured maximum cacheable size."""
    pass
